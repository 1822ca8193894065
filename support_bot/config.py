from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    bot_token: str = ""
    webhook_url: str = ""
    webhook_secret: str = ""
    operator_ids: str = ""

    tickets_folder_name: str = "support-tickets"
    drive_parent_folder_id: str = ""
    google_service_account_file: str = ""

    catalog_sheet_id: str = ""
    catalog_range: str = "Products!A:D"
    catalog_images_range: str = "Images!A:B"
    catalog_page_size: int = 5

    ticket_list_limit: int = 10
    browsing_session_ttl_seconds: int = 3600
    browsing_session_max_entries: int = 1000
    clear_pending_on_forward_failure: bool = True

    log_level: str = "INFO"
    log_dir: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def operator_id_set(self) -> frozenset[int]:
        """Operator allow-list parsed from the comma separated OPERATOR_IDS."""
        ids = set()
        for chunk in self.operator_ids.split(","):
            chunk = chunk.strip()
            if chunk:
                ids.add(int(chunk))
        return frozenset(ids)


settings = Settings()

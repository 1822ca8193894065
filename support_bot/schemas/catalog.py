from pydantic import BaseModel, ConfigDict


class CatalogItem(BaseModel):
    id: str
    name: str = ""
    price: str = ""
    description: str = ""
    image_url: str = ""

    model_config = ConfigDict(frozen=True)

import asyncio

import pytest

from support_bot.services.ticket_store import TicketStore, safe_file_name


class TestFolder:
    @pytest.mark.asyncio
    async def test_concurrent_first_calls_create_one_folder(self, store, drive):
        first, second = await asyncio.gather(store.ensure_folder(), store.ensure_folder())

        assert first == second
        assert drive.folder_calls == 1

    @pytest.mark.asyncio
    async def test_folder_id_is_cached(self, store, drive):
        await store.ensure_folder()
        await store.ensure_folder()

        assert drive.folder_calls == 1

    @pytest.mark.asyncio
    async def test_empty_parent_means_drive_root(self, drive):
        assert TicketStore(drive, "support-tickets", parent_folder_id="").parent_folder_id is None


def test_safe_file_name():
    assert safe_file_name("my photo (1).jpg") == "my_photo__1_.jpg"
    assert safe_file_name("...") == "file"

"""In-memory stand-ins for the CRM and the bot file API, used through dependency overrides."""
from backend.app.services.bitrix_client import CRMUnavailable
from backend.app.services.telegram_client import FileFetched, FileFetchFailed


class FakeCRM:
    def __init__(
        self,
        *,
        existing_contacts: dict[str, str] | None = None,
        fail_on: str | None = None,
        failing_contacts: set[str] | None = None,
    ):
        self.contacts: dict[str, dict] = {}
        self.deals: dict[str, dict] = {}
        self.phones = dict(existing_contacts or {})  # phone -> contact id
        self.fail_on = fail_on
        self.failing_contacts = set(failing_contacts or ())  # update_contact fails only for these
        self.calls: list[tuple[str, object]] = []
        self._next_id = 500

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def _maybe_fail(self, method: str) -> None:
        if self.fail_on == method:
            raise CRMUnavailable(f"CRM {method} timed out", method=method)

    async def find_contact_by_phone(self, phone):
        self.calls.append(("find_contact_by_phone", phone))
        return self.phones.get(phone)

    async def create_contact(self, fields):
        self.calls.append(("create_contact", dict(fields)))
        self._maybe_fail("create_contact")
        contact_id = self._new_id()
        self.contacts[contact_id] = dict(fields)
        for phone in fields.get("PHONE") or []:
            self.phones[phone["VALUE"]] = contact_id
        return contact_id

    async def update_contact(self, contact_id, fields):
        self.calls.append(("update_contact", (contact_id, dict(fields))))
        self._maybe_fail("update_contact")
        if contact_id in self.failing_contacts:
            raise CRMUnavailable(f"CRM update for {contact_id} timed out", method="crm.contact.update")
        self.contacts.setdefault(contact_id, {}).update(fields)

    async def find_deal_by_contact(self, contact_id):
        self.calls.append(("find_deal_by_contact", contact_id))
        for deal_id, fields in self.deals.items():
            if fields.get("CONTACT_ID") == contact_id:
                return deal_id
        return None

    async def create_deal(self, fields):
        self.calls.append(("create_deal", dict(fields)))
        self._maybe_fail("create_deal")
        deal_id = self._new_id()
        self.deals[deal_id] = dict(fields)
        return deal_id

    async def update_deal(self, deal_id, fields):
        self.calls.append(("update_deal", (deal_id, dict(fields))))
        self.deals[deal_id].update(fields)

    def method_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeTelegram:
    """file_id -> (file_path, bytes); anything else is answered as 'not a file'."""

    def __init__(self, files: dict[str, tuple[str, bytes]] | None = None, failures: dict[str, str] | None = None):
        self.files = dict(files or {})
        self.failures = dict(failures or {})
        self.requested: list[str] = []

    async def fetch_file(self, file_id):
        self.requested.append(file_id)
        if file_id in self.failures:
            return FileFetchFailed(file_id=file_id, reason=self.failures[file_id], retriable=True)
        if file_id in self.files:
            path, data = self.files[file_id]
            return FileFetched(file_id=file_id, file_path=path, data=data)
        return FileFetchFailed(file_id=file_id, reason="not_a_file", status_code=400)

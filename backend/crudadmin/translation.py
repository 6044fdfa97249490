"""Message catalogue for flash messages and labels.

Messages use ``%name%`` placeholders. Unknown keys translate to themselves so
custom admins can pass literal strings.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

DEFAULT_DOMAIN = "CrudAdmin"

MESSAGES: dict[str, dict[str, str]] = {
    DEFAULT_DOMAIN: {
        "flash_create_success": 'Item "%name%" has been successfully created.',
        "flash_create_error": 'An error has occurred during the creation of item "%name%".',
        "flash_edit_success": 'Item "%name%" has been successfully updated.',
        "flash_edit_error": 'An error has occurred during update of item "%name%".',
        "flash_lock_error": (
            'Another user has modified item "%name%" in the meantime. Please '
            "%link_start%click here%link_end% to reload the page and apply your changes again."
        ),
        "flash_delete_success": 'Item "%name%" has been deleted successfully.',
        "flash_delete_error": 'An error has occurred during deletion of item "%name%".',
        "flash_batch_delete_success": "Selected items have been successfully deleted.",
        "flash_batch_delete_error": "An error has occurred during selected items deletion.",
        "flash_batch_empty": "Action aborted. No items were selected.",
        "flash_acl_edit_success": "ACL has been successfully updated.",
        "action_delete": "Delete",
        "title_create": "Create",
        "title_edit": 'Edit "%name%"',
        "title_list": "List",
        "title_show": 'Show "%name%"',
        "title_history": "History",
        "title_acl": "ACL",
        "title_batch_confirmation": "Confirm batch action",
        "message_batch_confirmation": "Are you sure you want to confirm this action and execute it for the selected elements?",
        "message_batch_all_confirmation": "Are you sure you want to confirm this action and execute it for all elements?",
        "message_delete_confirmation": 'Are you sure you want to delete the selected "%object%" element?',
    }
}


class Translator:
    def __init__(self, catalogue: Optional[Mapping[str, Mapping[str, str]]] = None):
        self.catalogue: dict[str, dict[str, str]] = {d: dict(m) for d, m in MESSAGES.items()}
        for domain, messages in (catalogue or {}).items():
            self.catalogue.setdefault(domain, {}).update(messages)

    def trans(self, key: str, params: Optional[Mapping[str, Any]] = None, domain: Optional[str] = None) -> str:
        messages = self.catalogue.get(domain or DEFAULT_DOMAIN, {})
        message = messages.get(key)
        if message is None and domain and domain != DEFAULT_DOMAIN:
            message = self.catalogue[DEFAULT_DOMAIN].get(key)
        if message is None:
            message = key
        for name, value in (params or {}).items():
            message = message.replace(name, str(value))
        return message


translator = Translator()

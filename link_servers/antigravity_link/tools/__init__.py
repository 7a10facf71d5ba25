"""
Command injection tools, one module per command.

- base: CommandResult, Strategy, the first-success combinator
- shadow_dom: JavaScript helpers for shadow roots and same-origin frames
- message: chat message insert + submit
- click: selector / coordinate / text click
- upload: file attachment via the app UI or a direct file input
- diagnostics: upload probe
"""

from .base import CommandResult, Strategy, first_success
from .click import click_element
from .diagnostics import probe_uploads
from .message import send_message
from .upload import upload_file

__all__ = [
    "CommandResult",
    "Strategy",
    "click_element",
    "first_success",
    "probe_uploads",
    "send_message",
    "upload_file",
]

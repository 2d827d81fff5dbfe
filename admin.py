"""Admin store for Remo Bot.

The creator is fixed by configuration and is always an admin. Additional
admins live in a JSON file ({"admins": [...]}) that is re-read on every call,
so edits made by hand take effect without a restart.
"""

import json
import os
from typing import List

from config import settings
from logger_config import setup_logger
from schemas import AdminList, AdminResult

logger = setup_logger(__name__, 'admin.log')

JID_SUFFIX = '@s.whatsapp.net'


def _ensure_admins_file() -> None:
    path = settings.admins_path
    try:
        data_dir = os.path.dirname(path)
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)
        if not os.path.exists(path):
            with open(path, 'w', encoding='utf-8') as fh:
                json.dump({'admins': []}, fh, indent=2)
            logger.info(f"[ADMIN] Created new admins.json at {path}")
    except OSError as e:
        logger.warning(f"[ADMIN] Could not ensure admins file: {e}")


def _read_admins() -> List[str]:
    """Read the admin list, falling back to an empty list on any problem."""
    _ensure_admins_file()
    try:
        with open(settings.admins_path, 'r', encoding='utf-8') as fh:
            parsed = json.load(fh)
    except (OSError, ValueError) as e:
        logger.warning(f"[ADMIN] Could not read admins.json: {e}. Using empty admin list.")
        return []

    if not isinstance(parsed, dict) or not isinstance(parsed.get('admins'), list):
        logger.warning("[ADMIN] Invalid admins.json structure, using empty admin list")
        return []

    return parsed['admins']


def _write_admins(admins: List[str]) -> None:
    try:
        with open(settings.admins_path, 'w', encoding='utf-8') as fh:
            json.dump({'admins': admins}, fh, indent=2)
    except OSError as e:
        logger.error(f"[ADMIN] Failed to write admins.json: {e}")
        raise


def is_creator(jid: str) -> bool:
    return jid == settings.CREATOR_JID


def is_admin(jid: str) -> bool:
    """Creator is always admin; everyone else must be in the file."""
    if not jid:
        return False
    if is_creator(jid):
        return True
    return jid in _read_admins()


def _valid_target(jid: str) -> bool:
    return bool(jid) and JID_SUFFIX in jid


def promote_admin(promoter_jid: str, target_jid: str) -> AdminResult:
    """Promote a user to admin (creator only)."""
    if not is_creator(promoter_jid):
        return AdminResult(success=False, message='Only the creator can promote admins')

    if not _valid_target(target_jid):
        return AdminResult(success=False, message='Invalid JID format')

    if is_creator(target_jid):
        return AdminResult(success=False, message='Creator is already admin')

    try:
        admins = _read_admins()
        if target_jid in admins:
            return AdminResult(success=False, message='User is already an admin')

        admins.append(target_jid)
        _write_admins(admins)
    except OSError as e:
        logger.error(f"[ADMIN] Promotion failed: {e}")
        return AdminResult(success=False, message='Failed to promote user')

    logger.info(f"[ADMIN] {target_jid} promoted to admin by {promoter_jid}")
    return AdminResult(success=True, message='User promoted to admin successfully')


def demote_admin(demoter_jid: str, target_jid: str) -> AdminResult:
    """Remove a user from the admin list (creator only)."""
    if not is_creator(demoter_jid):
        return AdminResult(success=False, message='Only the creator can demote admins')

    if not _valid_target(target_jid):
        return AdminResult(success=False, message='Invalid JID format')

    if is_creator(target_jid):
        return AdminResult(success=False, message='Cannot demote the creator')

    try:
        admins = _read_admins()
        if target_jid not in admins:
            return AdminResult(success=False, message='User is not an admin')

        _write_admins([jid for jid in admins if jid != target_jid])
    except OSError as e:
        logger.error(f"[ADMIN] Demotion failed: {e}")
        return AdminResult(success=False, message='Failed to demote user')

    logger.info(f"[ADMIN] {target_jid} demoted from admin by {demoter_jid}")
    return AdminResult(success=True, message='User demoted from admin successfully')


def get_admin_list() -> AdminList:
    return AdminList(creator=settings.CREATOR_JID, admins=_read_admins())


def init_admin_system() -> None:
    """Create the data directory and admins file, called on startup."""
    _ensure_admins_file()
    admins = _read_admins()
    logger.info(
        f"[ADMIN] Admin system initialized. Creator: {settings.CREATOR_JID}, "
        f"Additional admins: {len(admins)}"
    )

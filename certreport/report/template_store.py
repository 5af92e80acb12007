from __future__ import annotations

import logging
import threading
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from certreport.exceptions import TemplateLoadError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates'

TEMPLATE_SLOTS: tuple[str, ...] = (
    'document',
    'page_header',
    'page_footer',
    'cover',
    'version_control',
    'revision_row',
    'inspection_details',
    'inspection_intro_clearance',
    'inspection_intro_assessment',
    'clearance_certification',
    'item_table',
    'item_row',
    'sign_off',
    'sign_off_page',
    'background',
    'appendix_cover',
    'photo_page',
    'photo_item',
    'attachment_image_page',
)


class TemplateStore:
    """Loads the named HTML fragments once and serves them read-only.

    Every slot is read on first access; a missing or unreadable fragment
    raises ``TemplateLoadError`` and nothing is cached, so the next call
    retries the load.
    """

    def __init__(self, root: Path | None = None, *, slots: tuple[str, ...] = TEMPLATE_SLOTS):
        self.root = Path(root) if root is not None else DEFAULT_TEMPLATE_DIR
        self.slots = slots
        self._templates: Mapping[str, str] | None = None
        self._lock = threading.Lock()

    def path_for(self, slot: str) -> Path:
        return self.root / f'{slot}.html'

    def load(self) -> Mapping[str, str]:
        if self._templates is not None:
            return self._templates
        with self._lock:
            if self._templates is None:
                loaded: dict[str, str] = {}
                for slot in self.slots:
                    path = self.path_for(slot)
                    try:
                        loaded[slot] = path.read_text(encoding='utf-8')
                    except FileNotFoundError as exc:
                        raise TemplateLoadError(f'template not found: {slot}', detail=str(path)) from exc
                    except (OSError, UnicodeDecodeError) as exc:
                        raise TemplateLoadError(f'template unreadable: {slot}', detail=f'{path}: {exc}') from exc
                logger.info('loaded %d report templates from %s', len(loaded), self.root)
                self._templates = MappingProxyType(loaded)
        return self._templates

    def get_template(self, slot: str) -> str:
        templates = self.load()
        try:
            return templates[slot]
        except KeyError as exc:
            raise TemplateLoadError(f'unknown template slot: {slot}') from exc


@lru_cache(maxsize=None)
def _store_for(root: Path) -> TemplateStore:
    return TemplateStore(root)


def get_template_store(root: Path | str | None = None) -> TemplateStore:
    """Process-wide store for one template directory; ``None`` selects the bundled set."""
    path = Path(root).expanduser().resolve() if root is not None else DEFAULT_TEMPLATE_DIR
    return _store_for(path)

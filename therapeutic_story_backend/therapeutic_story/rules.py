import time
import logging
import threading
from typing import Callable, Dict, Optional, Tuple
from pydantic import ValidationError
from .errors import DataIntegrityError, RulesVersionNotFoundError
from .models import ClinicalRulesBundle
from .storage import DocumentStore

logger = logging.getLogger(__name__)

RULES_COLLECTION = "clinical_rules"
SETTINGS_COLLECTION = "settings"
RULES_SETTINGS_DOC = "rules"

RULE_MAPS = ("ageRules", "goalMappings", "copingTools", "endingRules", "sensitivityRules", "exclusions")


class ClinicalRulesLoader:
    """
    Loads clinical rules bundles by version, one document per version, so a
    bundle is never assembled from two versions. Loaded bundles are frozen and
    shared between callers until their cache entry expires or is invalidated.
    """

    def __init__(self, store: DocumentStore, cache_ttl_s: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.cache_ttl_s = cache_ttl_s
        self._clock = clock
        self._cache: Dict[str, Tuple[float, ClinicalRulesBundle]] = {}
        self._lock = threading.Lock()

    def default_version(self) -> str:
        doc = self.store.get(SETTINGS_COLLECTION, RULES_SETTINGS_DOC) or {}
        version = doc.get("defaultVersion")
        if not version:
            raise DataIntegrityError("RULES_DEFAULT_VERSION_MISSING", "No default clinical rules version is configured")
        return version

    def load(self, version: Optional[str] = None) -> ClinicalRulesBundle:
        if version is None:
            version = self.default_version()

        with self._lock:
            cached = self._cache.get(version)
            if cached is not None:
                loaded_at, bundle = cached
                if self._clock() - loaded_at < self.cache_ttl_s:
                    return bundle
                del self._cache[version]

        bundle = self._fetch(version)
        with self._lock:
            self._cache[version] = (self._clock(), bundle)
        return bundle

    def invalidate(self, version: Optional[str] = None):
        with self._lock:
            if version is None:
                self._cache.clear()
            else:
                self._cache.pop(version, None)
        logger.info(f"Invalidated clinical rules cache ({version or 'all versions'})")

    def _fetch(self, version: str) -> ClinicalRulesBundle:
        try:
            doc = self.store.get(RULES_COLLECTION, version)
        except ValueError:
            doc = None
        if doc is None:
            logger.error(f"Clinical rules version {version} not found")
            raise RulesVersionNotFoundError(version)

        empty = [name for name in RULE_MAPS if not doc.get(name)]
        if empty:
            raise DataIntegrityError("RULES_BUNDLE_INCOMPLETE", f"Clinical rules {version} has no entries for: {', '.join(empty)}")
        try:
            bundle = ClinicalRulesBundle.model_validate({**doc, "version": version})
        except ValidationError as e:
            logger.error(f"Clinical rules {version} failed to parse: {e}")
            raise DataIntegrityError("RULES_BUNDLE_INVALID", f"Clinical rules {version} are malformed") from e

        if bundle.status != "active":
            logger.warning(f"Loaded clinical rules {version} with status {bundle.status}")
        logger.info(f"Loaded clinical rules {version}")
        return bundle

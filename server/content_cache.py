"""
Process-local cache for the editable page copy stored in the content table.

Entries live for `ttl` seconds. A miss fetches the section under a timeout,
retrying with linearly increasing delays; if the store keeps failing, the
built-in default for the section is cached so a broken backend is not hit on
every request. Editing a section calls invalidate(), which drops the entry,
bumps the section generation and notifies subscribers.

Every fetch carries a request token. Its result is only cached if the section
was not invalidated and no newer fetch for the same section started while it
was in flight.

Fetches run on a bounded worker pool. A fetch that times out keeps its worker
until the store answers, and time spent waiting for a free worker counts
against the next fetch's timeout. Size max_workers for the number of sections
that may stall at once.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

CACHE_TTL = 30.0
REQUEST_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_DELAY = 1.5

DEFAULT_CONTENT: Dict[str, dict] = {
    'home': {
        'hero_title': "Premios San Cristóbal",
        'hero_subtitle': "Honrando la Excelencia y el Legado en nuestra comunidad",
        'hero_description': "Celebrando a los individuos y organizaciones que han hecho contribuciones "
                            "excepcionales a nuestra sociedad y cultura.",
        'cta_primary': "Ver Nominados",
        'cta_secondary': "Votar Ahora",
    },
    'about': {
        'title': "Acerca de los Premios San Cristóbal",
        'history': "Los Premios San Cristóbal nacieron en 2018 con la visión de reconocer y celebrar "
                   "la excelencia en diversos ámbitos de nuestra sociedad.",
        'mission': "Nuestra misión es promover y celebrar el talento artístico en todas sus formas.",
        'vision': "Buscamos ser el reconocimiento más prestigioso en el ámbito cultural y artístico.",
        'team_title': "Nuestro Equipo",
        'contact_title': "Contacto",
    },
    'events': {
        'main_title': "Gala de Premiación",
        'main_description': "La Gala de Premiación de los Premios San Cristóbal es el evento más esperado del año.",
        'program_title': "Programa del Evento",
        'details_title': "Detalles del Evento",
        'date_label': "Fecha",
        'time_label': "Hora",
        'location_label': "Ubicación",
        'cta_button': "Reservar Entrada",
    },
    'footer': {
        'title': "Premios San Cristóbal",
        'tagline': "Honrando la Excelencia y el Legado",
        'links_title': "Enlaces",
        'legal_title': "Legal",
        'contact_title': "Contacto",
        'email': "Email: info@premiossancristobal.com",
        'copyright': "© Premios San Cristóbal. Todos los derechos reservados.",
    },
}


@dataclass
class CacheEntry:
    document: dict
    fetched_at: float
    is_default: bool = False


@dataclass
class ContentInvalidated:
    """Passed to subscribers. section is None when the whole cache was cleared."""
    section: Optional[str]
    generation: int
    timestamp: float = field(default_factory=time.time)


class ContentFetchError(Exception):
    pass


Listener = Callable[[ContentInvalidated], None]


class ContentCache:
    def __init__(self, fetcher: Callable[[str], Optional[dict]], defaults: Optional[Dict[str, dict]] = None,
                 ttl: float = CACHE_TTL, timeout: float = REQUEST_TIMEOUT, max_retries: int = MAX_RETRIES,
                 retry_delay: float = RETRY_DELAY, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep, max_workers: int = 8):
        self.fetcher = fetcher
        self.defaults = DEFAULT_CONTENT if defaults is None else defaults
        self.ttl = ttl
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.clock = clock
        self.sleep = sleep

        self._entries: Dict[str, CacheEntry] = {}
        self._generations: Dict[str, int] = {}
        self._global_generation = 0
        self._latest_request: Dict[str, int] = {}
        self._request_counter = 0
        self._listeners: List[tuple] = []
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='content-fetch')

    def default_for(self, section: str) -> dict:
        return dict(self.defaults.get(section, {}))

    def generation(self, section: str) -> int:
        with self._lock:
            return self._global_generation + self._generations.get(section, 0)

    def peek(self, section: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(section)

    def get(self, section: str) -> dict:
        """Return the document for a section, fetching it if the cached copy is missing or expired"""
        with self._lock:
            entry = self._entries.get(section)
            if entry is not None and self.clock() - entry.fetched_at < self.ttl:
                return entry.document

        # An invalidation while the fetch is in flight makes its result stale; fetch again
        for _ in range(3):
            token, generation = self._begin_request(section)
            document, is_default = self._fetch_with_retry(section)
            if self._commit(section, token, generation, document, is_default):
                return document
            logger.info(f"Discarding stale content fetch for section {section!r}")
        return document

    def invalidate(self, section: Optional[str] = None) -> None:
        """Drop one section (or every section) and notify subscribers"""
        with self._lock:
            if section is None:
                self._entries.clear()
                self._global_generation += 1
            else:
                self._entries.pop(section, None)
                self._generations[section] = self._generations.get(section, 0) + 1
            event = ContentInvalidated(section=section, generation=self._global_generation
                                       + (self._generations.get(section, 0) if section else 0))
            listeners = [listener for wanted, listener in self._listeners
                         if section is None or wanted is None or wanted == section]
        logger.info(f"Content cache invalidated: {section or 'all sections'}")

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"❌ Content invalidation listener failed: {e}", exc_info=True)

    def subscribe(self, listener: Listener, section: Optional[str] = None) -> Callable[[], None]:
        """Call listener on invalidation of section (or of any section when None). Returns an unsubscribe function."""
        subscription = (section, listener)
        with self._lock:
            self._listeners.append(subscription)

        def unsubscribe():
            with self._lock:
                if subscription in self._listeners:
                    self._listeners.remove(subscription)
        return unsubscribe

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _begin_request(self, section: str):
        with self._lock:
            self._request_counter += 1
            token = self._request_counter
            self._latest_request[section] = token
            return token, self._global_generation + self._generations.get(section, 0)

    def _commit(self, section: str, token: int, generation: int, document: dict, is_default: bool) -> bool:
        with self._lock:
            current = self._global_generation + self._generations.get(section, 0)
            if current != generation:
                return False
            if self._latest_request.get(section) != token:
                # A newer fetch owns the entry; keep its result
                return True
            self._entries[section] = CacheEntry(document=document, fetched_at=self.clock(), is_default=is_default)
            return True

    def _fetch_once(self, section: str) -> Optional[dict]:
        future = self._executor.submit(self.fetcher, section)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise ContentFetchError(f"Request for section {section!r} timed out after {self.timeout}s") from e

    def _fetch_with_retry(self, section: str):
        attempt = 0
        while True:
            try:
                document = self._fetch_once(section)
            except Exception as e:
                logger.error(f"❌ Error loading content for section {section!r} (attempt {attempt + 1}): {e}")
                if attempt < self.max_retries:
                    attempt += 1
                    delay = self.retry_delay * attempt
                    logger.info(f"Retrying content fetch for {section!r} in {delay}s...")
                    self.sleep(delay)
                    continue
                logger.warning(f"⚠ Using default content for section {section!r} after {attempt + 1} failed attempts")
                return self.default_for(section), True

            if document is None:
                logger.warning(f"⚠ No content found for section {section!r}, using defaults")
                return self.default_for(section), True
            return document, False

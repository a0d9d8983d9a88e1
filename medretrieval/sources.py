"""
Source Adapters
One adapter per external knowledge API, each mapping the provider's response
into KnowledgeItem objects.

Contract shared by every adapter:
- exactly one logical fetch per call, ``fetch(query, max_results)``
- a non-200 status or an unexpected body yields ``[]``
- transport failures (DNS, connection reset, read timeout) propagate so the
  aggregator can count them as a failed source
"""
import hashlib
from typing import Any, Dict, Iterable, List, Optional

import requests

from .config import DEFAULT_SOURCE_PRIORITY, SOURCE_PRIORITY, settings
from .logging_config import get_logger, timed
from .models import KnowledgeItem

log = get_logger("sources")


def fallback_item_id(source: str, *candidates: str) -> str:
    """Deterministic id for provider records that carry no identifier."""
    basis = next((c for c in candidates if c), "")
    digest = hashlib.sha256(basis.encode("utf-8")).hexdigest()[:16]
    return f"{source}:{digest}"


def _dict(value: Any) -> Dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _list(value: Any) -> List:
    return value if isinstance(value, list) else []


def _strings(values: Iterable[Any]) -> List[str]:
    out = []
    for value in values:
        if isinstance(value, list):
            out.extend(_strings(value))
        elif isinstance(value, dict):
            name = value.get("name") or value.get("display_name")
            if name:
                out.append(str(name))
        elif value:
            out.append(str(value))
    return out


class SourceAdapter:
    """Base class for external knowledge source adapters."""

    name = "source"
    label = "Medical Source"
    BASE_URL = ""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = None):
        self.session = session or requests.Session()
        self.timeout = timeout or settings.source_timeout_seconds

    @property
    def priority(self) -> int:
        return SOURCE_PRIORITY.get(self.label, DEFAULT_SOURCE_PRIORITY)

    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        raise NotImplementedError

    def _get_json(self, url: str, params: Dict = None, headers: Dict = None) -> Optional[Dict]:
        response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        if response.status_code != 200:
            log.debug(f"{self.name} returned HTTP {response.status_code}")
            return None
        try:
            data = response.json()
        except ValueError:
            log.debug(f"{self.name} returned a non-JSON body")
            return None
        return data if isinstance(data, dict) else None

    def _item(self, external_id: Optional[str], title: Any, url: Any, **fields) -> KnowledgeItem:
        # providers occasionally send numbers or nulls where text is expected
        title, url = _text(title), _text(url)
        for key in ("summary", "date"):
            if key in fields:
                fields[key] = _text(fields[key])
        return KnowledgeItem(
            id=_text(external_id) or fallback_item_id(self.label, url, title),
            title=title,
            url=url,
            source=self.label,
            priority=self.priority,
            **fields,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class PubMedAdapter(SourceAdapter):
    """PubMed review articles via NCBI E-utilities (esearch + esummary)."""

    name = "pubmed"
    label = "PubMed"
    BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

    @timed(name="pubmed.fetch")
    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        search = self._get_json(
            f"{self.BASE_URL}/esearch.fcgi",
            params={
                "db": "pubmed",
                "retmode": "json",
                "sort": "date",
                "term": f"{query} AND review[pt]",
                "retmax": max_results,
            },
        )
        ids = [str(uid) for uid in _list(_dict((search or {}).get("esearchresult")).get("idlist")) if uid]
        if not ids:
            return []

        summary = self._get_json(
            f"{self.BASE_URL}/esummary.fcgi",
            params={"db": "pubmed", "retmode": "json", "id": ",".join(ids)},
        )
        result = _dict((summary or {}).get("result"))

        items = []
        for uid in ids:
            doc = result.get(uid)
            if not isinstance(doc, dict):
                continue
            items.append(self._item(
                f"PMID:{uid}",
                doc.get("title", ""),
                f"https://pubmed.ncbi.nlm.nih.gov/{uid}/",
                summary=f"{doc.get('elocationid', '')} {doc.get('source', '')}".strip(),
                date=doc.get("pubdate", "") or "",
                tags=_strings(_list(doc.get("pubtype"))),
            ))
        return items[:max_results]


class CDCAdapter(SourceAdapter):
    """CDC content syndication media search."""

    name = "cdc"
    label = "CDC"
    BASE_URL = "https://tools.cdc.gov/api/v2/resources/media"

    @timed(name="cdc.fetch")
    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        data = self._get_json(
            self.BASE_URL,
            params={
                "max": max_results,
                "q": query,
                "sort": "Most Recent",
                "language": "en",
                "format": "json",
            },
        )
        results = (data or {}).get("results")
        if isinstance(results, dict):
            results = results.get("results")

        items = []
        for media in _list(results):
            if not isinstance(media, dict):
                continue
            media_id = media.get("id")
            url = media.get("link") or media.get("url") or media.get("sourceUrl") or ""
            items.append(self._item(
                f"CDC:{media_id}" if media_id else None,
                media.get("name", ""),
                url,
                summary=media.get("description") or "",
                date=media.get("datePublished") or media.get("dateModified") or "",
                tags=_strings([media.get("audience"), media.get("topic")]),
            ))
        return items[:max_results]


class ClinicalTrialsAdapter(SourceAdapter):
    """ClinicalTrials.gov API v2 study search by condition."""

    name = "ctgov"
    label = "ClinicalTrials.gov"
    BASE_URL = "https://clinicaltrials.gov/api/v2/studies"

    @timed(name="ctgov.fetch")
    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        data = self._get_json(
            self.BASE_URL,
            params={"query.cond": query, "pageSize": max_results, "format": "json"},
        )

        items = []
        for study in _list((data or {}).get("studies")):
            protocol = _dict(study).get("protocolSection")
            if not isinstance(protocol, dict):
                continue
            identification = _dict(protocol.get("identificationModule"))
            status = _dict(protocol.get("statusModule"))
            design = _dict(protocol.get("designModule"))
            conditions = _list(_dict(protocol.get("conditionsModule")).get("conditions"))

            nct_id = identification.get("nctId")
            date = (
                _dict(status.get("lastUpdatePostDateStruct")).get("date")
                or _dict(status.get("startDateStruct")).get("date")
                or ""
            )
            items.append(self._item(
                f"NCT:{nct_id}" if nct_id else None,
                identification.get("briefTitle", ""),
                f"https://clinicaltrials.gov/study/{nct_id}" if nct_id else "",
                summary=", ".join(_strings(conditions)),
                date=date,
                tags=_strings([status.get("overallStatus"), design.get("studyType")]),
            ))
        return items[:max_results]


class NICEAdapter(SourceAdapter):
    """NICE guidance syndication API (requires a subscription key)."""

    name = "nice"
    label = "NICE"
    BASE_URL = "https://api.nice.org.uk/syndication/guidance"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = None, api_key: str = None):
        super().__init__(session=session, timeout=timeout)
        self.api_key = settings.nice_api_key if api_key is None else api_key

    @timed(name="nice.fetch")
    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        data = self._get_json(
            self.BASE_URL,
            params={"search": query, "pageSize": max_results},
            headers={"subscription-key": self.api_key},
        )

        items = []
        for guidance in _list((data or {}).get("value")):
            if not isinstance(guidance, dict):
                continue
            items.append(self._item(
                str(guidance["id"]) if guidance.get("id") else None,
                guidance.get("title", ""),
                guidance.get("linkTo") or guidance.get("link") or guidance.get("url") or "",
                summary=guidance.get("summary") or "",
                date=guidance.get("datePublished") or guidance.get("lastMajorUpdate") or "",
                tags=_strings([guidance.get("type"), guidance.get("conditions") or []]),
            ))
        return items[:max_results]


def _abstract_from_inverted_index(index: Optional[Dict[str, List[int]]]) -> str:
    if not isinstance(index, dict):
        return ""
    positions = []
    for word, places in index.items():
        if not isinstance(places, list):
            continue
        for place in places:
            if isinstance(place, int):
                positions.append((place, str(word)))
    return " ".join(word for _, word in sorted(positions))


class OpenAlexAdapter(SourceAdapter):
    """OpenAlex open-access journal articles."""

    name = "openalex"
    label = "OpenAlex"
    BASE_URL = "https://api.openalex.org/works"

    @timed(name="openalex.fetch")
    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        params = {
            "search": query,
            "filter": "type:journal-article,is_oa:true",
            "per-page": max_results,
        }
        if settings.openalex_mailto:
            params["mailto"] = settings.openalex_mailto
        data = self._get_json(self.BASE_URL, params=params)

        items = []
        for work in _list((data or {}).get("results")):
            if not isinstance(work, dict):
                continue
            open_access = _dict(work.get("open_access"))
            location = _dict(work.get("primary_location"))
            url = open_access.get("oa_url") or location.get("landing_page_url") or work.get("doi") or ""
            items.append(self._item(
                work.get("id"),
                work.get("title") or "",
                url,
                summary=_abstract_from_inverted_index(work.get("abstract_inverted_index")),
                date=work.get("publication_date") or "",
                tags=_strings(_list(work.get("concepts"))[:5]),
            ))
        return items[:max_results]


def default_adapters() -> List[SourceAdapter]:
    """The static list of sources queried for every aggregation, in merge order."""
    return [
        PubMedAdapter(),
        CDCAdapter(),
        ClinicalTrialsAdapter(),
        NICEAdapter(),
        OpenAlexAdapter(),
    ]

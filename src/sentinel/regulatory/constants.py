"""Regulator configurations and discovery limits."""

from dataclasses import dataclass, field
from typing import List, Tuple

DEFAULT_LOOKBACK_DAYS = 30
MAX_RESULTS_PER_QUERY = 6
MAX_EXTRACT_URLS = 12
MAX_PORTAL_PAGES = 2
PORTAL_PAGE_SIZE = 10
MAX_CHUNKS_PER_DOCUMENT = 30
SUMMARY_LENGTH = 400

GRAPH_NAME = "sentinel"
REGULATORY_NODE = "regulatory"

CRITERIA_KEYWORDS: Tuple[str, ...] = (
    "must",
    "should",
    "shall",
    "required",
    "ensure",
    "prohibit",
    "oblig",
)

MAS_PORTAL_TOPICS: Tuple[str, ...] = ("anti-money-laundering", "regulatory-submissions")
MAS_PORTAL_CONTENT_TYPES: Tuple[str, ...] = (
    "Notices",
    "Circulars",
    "Guidelines",
    "Regulations",
    "Acts",
)


@dataclass(frozen=True)
class RegulatorConfig:
    """A regulatory authority with its discovery domains and search queries."""

    code: str
    regulator: str
    include_domains: List[str]
    queries: List[str]
    tags: List[str] = field(default_factory=list)


REGULATOR_CONFIGS: List[RegulatorConfig] = [
    RegulatorConfig(
        code="MAS",
        regulator="MAS",
        include_domains=["mas.gov.sg"],
        queries=[
            "MAS AML guidelines",
            "MAS Notice 626 updates",
            "MAS counter terrorism financing circular",
            "Monetary Authority of Singapore AML circular",
        ],
        tags=["regulatory", "mas"],
    ),
    RegulatorConfig(
        code="FINMA",
        regulator="FINMA",
        include_domains=["finma.ch"],
        queries=[
            "FINMA AML guidelines",
            "FINMA money laundering ordinance update",
            "site:finma.ch Geldwaescherei Rundschreiben",
        ],
        tags=["regulatory", "finma"],
    ),
    RegulatorConfig(
        code="HKMA",
        regulator="HKMA",
        include_domains=["hkma.gov.hk"],
        queries=[
            "HKMA AML guideline update",
            "HKMA counter terrorist financing circular",
            "site:hkma.gov.hk anti-money laundering guidance",
        ],
        tags=["regulatory", "hkma"],
    ),
]

DEFAULT_REGULATOR_CODES: List[str] = [config.code for config in REGULATOR_CONFIGS]

# Regulators with a dedicated portal crawler in addition to web search
PORTAL_REGULATORS = {"MAS"}

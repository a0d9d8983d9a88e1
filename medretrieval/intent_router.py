"""
Intent Router
Keyword scoring that decides which agent (medical or financial) answers a query.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List


class AgentType(str, Enum):
    MEDICAL = "medical"
    FINANCIAL = "financial"


MEDICAL_KEYWORDS: Dict[str, List[str]] = {
    "en": [
        "disease", "treatment", "drug", "medication", "diagnosis", "symptom",
        "test", "surgery", "doctor", "patient", "health", "cancer", "heart",
        "blood pressure", "diabetes", "cholesterol", "pain", "infection",
        "allergy", "medical",
    ],
    "ar": [
        "مرض", "علاج", "دواء", "تشخيص", "أعراض", "فحص", "تحليل", "جراحة",
        "طبيب", "مريض", "صحة", "سرطان", "قلب", "ضغط", "سكر", "كولسترول",
        "ألم", "التهاب", "عدوى", "حساسية",
    ],
}

FINANCIAL_KEYWORDS: Dict[str, List[str]] = {
    "en": [
        "money", "budget", "cost", "price", "invoice", "payment", "revenue",
        "profit", "loss", "account", "expense", "income", "balance", "financial",
    ],
    "ar": [
        "مال", "ميزانية", "تكلفة", "سعر", "فاتورة", "دفع", "إيراد", "ربح",
        "خسارة", "حساب", "مصروف", "دخل", "ميزان", "مالي",
    ],
}


@dataclass(frozen=True)
class AgentRoute:
    agent_type: AgentType
    query: str
    lang: str

    @property
    def use_medical_sources(self) -> bool:
        return self.agent_type is AgentType.MEDICAL


def _keywords(table: Dict[str, List[str]], lang: str) -> List[str]:
    return table.get(lang, table["en"])


def _hits(text: str, keywords: List[str]) -> int:
    return sum(1 for kw in keywords if kw in text)


def classify(query: str, lang: str = "en") -> AgentType:
    """
    Pick the agent for a raw query.

    Counts how many keywords of each category occur in the lower-cased query.
    Financial wins only with a strictly higher count; ties (including 0-0)
    go to the medical agent.
    """
    text = (query or "").lower().strip()
    medical = _hits(text, _keywords(MEDICAL_KEYWORDS, lang))
    financial = _hits(text, _keywords(FINANCIAL_KEYWORDS, lang))
    if financial > medical:
        return AgentType.FINANCIAL
    return AgentType.MEDICAL


def route(query: str, lang: str = "en") -> AgentRoute:
    return AgentRoute(agent_type=classify(query, lang), query=query, lang=lang)

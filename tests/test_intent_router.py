"""
Tests for the keyword intent router.
"""
from medretrieval.intent_router import AgentType, classify, route


class TestClassify:
    def test_medical_query(self):
        assert classify("What is the best treatment for diabetes?") is AgentType.MEDICAL

    def test_financial_query(self):
        assert classify("How do I pay this invoice and check my account balance?") is AgentType.FINANCIAL

    def test_tie_goes_to_medical(self):
        # one medical keyword ("medication"), one financial ("cost")
        assert classify("medication cost") is AgentType.MEDICAL

    def test_no_keywords_defaults_to_medical(self):
        assert classify("hello there") is AgentType.MEDICAL
        assert classify("") is AgentType.MEDICAL

    def test_arabic_keywords(self):
        assert classify("ما هو علاج مرض السكر", lang="ar") is AgentType.MEDICAL
        assert classify("كم سعر الفاتورة", lang="ar") is AgentType.FINANCIAL

    def test_unknown_language_uses_english(self):
        assert classify("budget and revenue", lang="fr") is AgentType.FINANCIAL


def test_route_carries_query_and_language():
    result = route("chest pain after exercise", lang="en")
    assert result.agent_type is AgentType.MEDICAL
    assert result.use_medical_sources
    assert result.query == "chest pain after exercise"
    assert result.lang == "en"
    assert not route("monthly budget and expense report").use_medical_sources

"""
Agent tests

Each agent is run against an LLM client whose completion call is mocked,
covering the normal path and the recovery path for unusable answers.
"""

import pytest
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.attachment.agent import AttachmentAnalyst
from agents.classifier.agent import DomainClassifier
from agents.editor.agent import SectionEditor
from agents.researcher.agent import Researcher
from agents.shared.errors import ErrorKind, PipelineError
from agents.shared.llm_client import LLMClient, LLMResponse
from agents.shared.reasoning_levels import get_reasoning_config
from agents.shared.schemas import Attachment
from agents.verifier.agent import Verifier, overall_certainty


def mock_llm(text: str, stop_reason: str = "stop") -> LLMClient:
    llm = LLMClient(api_key="test-key")
    llm.traced_create = AsyncMock(return_value=LLMResponse(
        text=text,
        stop_reason=stop_reason,
        trace={"request": {}, "response": {"raw": text, "stop_reason": stop_reason}}
    ))
    return llm


@pytest.mark.asyncio
class TestClassifier:

    async def test_profile_from_answer(self, recorder):
        answer = {"domain": "equity_research", "ticker": "NVDA", "company_name": "NVIDIA", "output_format": "slide_deck"}
        classifier = DomainClassifier(mock_llm(json.dumps(answer)))

        result = await classifier.run("Analyze NVIDIA", recorder, get_reasoning_config("light"))

        assert result.result.ticker == "NVDA"
        assert result.result.output_format == "slide_deck"
        assert "key_risks" in result.result.sections
        statuses = [t["status"] for t in recorder.of("trace")]
        assert statuses == ["pending", "completed"]

    async def test_fallback_profile(self, recorder):
        classifier = DomainClassifier(mock_llm("Sorry, I can't classify that."))

        result = await classifier.run("Analyze NVIDIA", recorder)

        assert result.result.domain == "equity_research"
        assert result.result.company_name == "Analyze NVIDIA"
        assert result.result.ticker == "N/A"
        assert result.trace["parse_warning"] == "Fallback profile used"

    async def test_model_override_from_reasoning_level(self, recorder):
        llm = mock_llm("{}")
        classifier = DomainClassifier(llm)
        config = get_reasoning_config("x-heavy")

        await classifier.run("q", recorder, config)

        assert llm.traced_create.await_args.kwargs["model"] == config.classifier_model


class TestEvidenceNormalization:

    def test_normalize_evidence(self):
        evidence = Researcher.normalize_evidence({"evidence": [{"source": "10-K"}, "junk", {"id": "X9"}]})
        assert [e["id"] for e in evidence] == ["E1", "X9"]

    def test_normalize_bare_list(self):
        assert len(Researcher.normalize_evidence([{"quote": "a"}])) == 1
        assert Researcher.normalize_evidence("nothing") == []


@pytest.mark.asyncio
class TestResearcher:

    async def test_run(self, recorder, domain_profile):
        answer = {"evidence": [{"source": "10-K", "quote": "Revenue up 8%"}]}
        researcher = Researcher(mock_llm(json.dumps(answer)))

        result = await researcher.run("Analyze Apple", domain_profile, recorder, get_reasoning_config("x-light"))

        assert result.result[0]["quote"] == "Revenue up 8%"


@pytest.mark.asyncio
class TestAttachmentAnalyst:

    async def test_unparseable_answer_keeps_excerpt(self, recorder):
        analyst = AttachmentAnalyst(mock_llm("The file discusses margins."))
        attachment = Attachment(filename="notes.txt", extracted_text="Gross margin was 46% in Q3.")

        result = await analyst.run(attachment, recorder)

        assert len(result.result) == 1
        assert result.result[0]["quote"] == "The file discusses margins."
        assert result.result[0]["source"] == "Uploaded: notes.txt"


class TestCertainty:

    def test_overall_certainty(self):
        assert overall_certainty({"findings": [{"certainty": 90}, {"certainty": 71}]}) == 80
        assert overall_certainty({"findings": []}) == 0


@pytest.mark.asyncio
class TestVerifier:

    async def test_removes_findings_below_threshold(self, recorder, domain_profile, sample_report):
        verified = json.loads(json.dumps(sample_report))
        verified["findings"][1]["certainty"] = 10
        verifier = Verifier(mock_llm(json.dumps(verified)))

        result = await verifier.run("q", domain_profile, sample_report, recorder, get_reasoning_config("light"))

        report = result.result
        assert [f["id"] for f in report["findings"]] == ["f1"]
        assert "risk_factors" not in [s["id"] for s in report["sections"]]
        assert result.trace["parsed_output"]["below_threshold"] == ["f2"]

    async def test_x_light_keeps_everything(self, recorder, domain_profile, sample_report):
        verified = json.loads(json.dumps(sample_report))
        verified["findings"][1]["certainty"] = 10
        verifier = Verifier(mock_llm(json.dumps(verified)))

        result = await verifier.run("q", domain_profile, sample_report, recorder, get_reasoning_config("x-light"))

        assert len(result.result["findings"]) == 2

    async def test_unusable_answer_falls_back_to_draft(self, recorder, domain_profile, sample_report):
        del sample_report["findings"][0]["certainty"]
        verifier = Verifier(mock_llm("I could not verify this report."))

        result = await verifier.run("q", domain_profile, sample_report, recorder, get_reasoning_config("x-light"))

        report = result.result
        assert report["findings"][0]["certainty"] == 60
        assert report["findings"][0]["explanation"]["contrary_evidence"] == []
        assert report["meta"]["overall_certainty"] == round((60 + 65) / 2)
        assert "parse_warning" in result.trace


@pytest.mark.asyncio
class TestSectionEditor:

    async def test_updates_one_section(self, recorder, domain_profile, sample_report):
        answer = {
            "updated_findings": [{"id": "f2", "section": "risk_factors", "certainty": 70,
                                  "explanation": {"title": "China", "text": "Shorter."}}],
            "updated_content": [{"type": "finding", "id": "f2"}]
        }
        editor = SectionEditor(mock_llm(json.dumps(answer)))

        result = await editor.run(sample_report, "risk_factors", "shorter", domain_profile, recorder)

        findings = {f["id"]: f for f in result.result["findings"]}
        assert findings["f2"]["explanation"]["text"] == "Shorter."
        assert findings["f1"] == sample_report["findings"][0]
        assert sample_report["findings"][1]["certainty"] == 65

    async def test_unknown_section(self, recorder, domain_profile, sample_report):
        editor = SectionEditor(mock_llm("{}"))

        with pytest.raises(PipelineError) as exc_info:
            await editor.run(sample_report, "nope", "x", domain_profile, recorder)

        assert exc_info.value.kind == ErrorKind.PRECONDITION

import pytest
import requests

import suggestions
from errors import ExternalServiceError, ValidationError
from models import Specialty


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.exceptions.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


def test_parse_specialties_in_order_of_mention():
    text = "Consider Neurology first, then general practice. ENT is unlikely. Cardiology maybe."
    assert suggestions.parse_specialties(text) == [
        Specialty.NEUROLOGY,
        Specialty.GENERAL_PRACTICE,
        Specialty.ENT,
        Specialty.CARDIOLOGY,
    ]


def test_parse_specialties_understands_practitioners():
    text = "You should see a cardiologist, or possibly a dermatologist."
    assert suggestions.parse_specialties(text) == [Specialty.CARDIOLOGY, Specialty.DERMATOLOGY]


@pytest.mark.parametrize(
    "text, specialty",
    [
        ("Book your GP first.", Specialty.GENERAL_PRACTICE),
        ("A family doctor can help.", Specialty.GENERAL_PRACTICE),
        ("Ask a pediatrician.", Specialty.PEDIATRICS),
        ("A paediatric clinic is best.", Specialty.PEDIATRICS),
        ("An orthopaedic surgeon should look at the knee.", Specialty.ORTHOPEDICS),
        ("Visit an eye doctor.", Specialty.OPHTHALMOLOGY),
        ("An otolaryngologist may help.", Specialty.ENT),
        ("Try an ear, nose and throat specialist.", Specialty.ENT),
        ("Talk to a psychiatrist.", Specialty.PSYCHIATRY),
        ("A urologist can check this.", Specialty.UROLOGY),
        ("See a gynaecologist.", Specialty.GYNECOLOGY),
        ("A neurologist should assess the headaches.", Specialty.NEUROLOGY),
    ],
)
def test_parse_specialties_wording(text, specialty):
    assert suggestions.parse_specialties(text) == [specialty]


def test_parse_specialties_ignores_partial_words():
    assert suggestions.parse_specialties("Sent to the neurosurgery ward by a gentle nurse") == []
    assert suggestions.parse_specialties("Keep an eye on it, then rest") == []
    assert suggestions.parse_specialties("") == []


def test_prompt_lists_every_specialty():
    prompt = suggestions.build_prompt("headache")
    assert "headache" in prompt
    for specialty in Specialty:
        assert specialty.value in prompt


def test_suggest_specialties_posts_to_the_service(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse({"response": "Dermatology would be best."})

    monkeypatch.setattr(suggestions.requests, "post", fake_post)

    result = suggestions.suggest_specialties("  itchy rash  ", url="http://ai.test", model="tiny", timeout=5)

    assert result.specialties == [Specialty.DERMATOLOGY]
    assert result.text == "Dermatology would be best."
    url, payload, timeout = calls[0]
    assert url == "http://ai.test"
    assert payload["model"] == "tiny"
    assert payload["stream"] is False
    assert "'itchy rash'" in payload["prompt"]
    assert timeout == 5


def test_service_down_is_reported(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(suggestions.requests, "post", fake_post)

    with pytest.raises(ExternalServiceError) as excinfo:
        suggestions.suggest_specialties("cough")
    assert excinfo.value.status_code == 503


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse({}, status=500),
        FakeResponse({"unexpected": "shape"}),
        FakeResponse(ValueError("not json")),
    ],
)
def test_bad_responses_are_reported(monkeypatch, response):
    monkeypatch.setattr(suggestions.requests, "post", lambda *a, **kw: response)
    with pytest.raises(ExternalServiceError):
        suggestions.suggest_specialties("cough")


def test_symptoms_are_required(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("service should not be called")

    monkeypatch.setattr(suggestions.requests, "post", fail)
    with pytest.raises(ValidationError):
        suggestions.suggest_specialties("   ")

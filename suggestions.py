# suggestions.py
"""Best-effort specialty suggestions from a local text-generation endpoint.

Nothing in the booking flow depends on this; callers show
``ExternalServiceError`` as a warning and carry on.
"""
import logging
import re
from collections import namedtuple

import requests

from errors import ExternalServiceError, ValidationError
from models import Specialty

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434/api/generate"
DEFAULT_MODEL = "llama3"

Suggestion = namedtuple("Suggestion", ["text", "specialties"])

# Field names and the practitioner wording a reply is likely to use
_MENTIONS = {
    Specialty.GENERAL_PRACTICE: [
        r"general\s*practi(?:ce|tioners?)",
        r"GPs?",
        r"family\s+(?:doctor|physician)s?",
    ],
    Specialty.CARDIOLOGY: [r"cardiolog\w*"],
    Specialty.DERMATOLOGY: [r"dermatolog\w*"],
    Specialty.NEUROLOGY: [r"neurolog\w*"],
    Specialty.PEDIATRICS: [r"pa?ediatric\w*"],
    Specialty.ORTHOPEDICS: [r"orthopa?edic\w*", r"orthopa?edist\w*"],
    Specialty.OPHTHALMOLOGY: [r"ophthalmolog\w*", r"eye\s+(?:doctor|specialist)s?"],
    Specialty.ENT: [r"ENT", r"otolaryngolog\w*", r"ear,?\s+nose,?\s+(?:and|&)\s+throat"],
    Specialty.PSYCHIATRY: [r"psychiatr\w*"],
    Specialty.UROLOGY: [r"urolog\w*"],
    Specialty.GYNECOLOGY: [r"gyna?ecolog\w*", r"OB[/-]?GYN"],
}

_PATTERNS = {
    specialty: re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)
    for specialty, words in _MENTIONS.items()
}


def build_prompt(symptoms):
    names = ", ".join(s.value for s in Specialty)
    return (
        f"Given the following list of medical specialties: {names}, "
        f"and the patient's symptoms: '{symptoms}', suggest the most relevant specialties."
    )


def parse_specialties(text):
    """Specialties mentioned in ``text``, in the order they first appear.

    Both field names ("Cardiology") and practitioners ("cardiologist") count.
    """
    found = []
    for specialty, pattern in _PATTERNS.items():
        match = pattern.search(text or "")
        if match:
            found.append((match.start(), specialty))
    return [specialty for _, specialty in sorted(found, key=lambda item: item[0])]


def suggest_specialties(symptoms, url=DEFAULT_URL, model=DEFAULT_MODEL, timeout=30):
    """Ask the service about ``symptoms``; returns the reply text and the specialties in it."""
    symptoms = (symptoms or "").strip()
    if not symptoms:
        raise ValidationError("Please describe your symptoms.")

    payload = {"model": model, "prompt": build_prompt(symptoms), "stream": False}
    try:
        response = requests.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
        text = response.json()["response"]
    except requests.exceptions.RequestException as e:
        logger.warning("Suggestion service request failed: %s", e)
        raise ExternalServiceError("AI service not available. Please try again later.")
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Suggestion service returned an unexpected payload: %s", e)
        raise ExternalServiceError("Could not process your request. Please try again later.")

    text = str(text).strip()
    return Suggestion(text, parse_specialties(text))

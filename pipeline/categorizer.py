"""
Line-item categorization: plumbing/heating (PH) vs HVAC.

The keyword scorer is the guaranteed path: deterministic, side-effect free,
total over all strings.  An optional classifier (e.g. an LLM) is consulted
first; anything it gets wrong -- an exception, or an answer outside
PH/HVAC/UNKNOWN -- falls back to the keyword scorer.
"""
import logging
import re
from typing import Callable, Optional

from models.invoice import CATEGORIES

logger = logging.getLogger(__name__)

PH_KEYWORDS = ("plumb", "pipe", "water", "drain", "faucet", "toilet", "sink", "valve", "heating")
HVAC_KEYWORDS = ("hvac", "air", "condition", "duct", "vent", "furnace", "cool", "refriger", "filter")

CategoryClassifier = Callable[[str], str]


def categorize_item(description: Optional[str]) -> str:
    """
    Score a description against both keyword sets.

    Each keyword counts once if it appears anywhere in the case-folded
    description.  The strictly higher score wins; a tie (including 0-0)
    is UNKNOWN.
    """
    desc = (description or "").casefold()
    ph_score = sum(1 for k in PH_KEYWORDS if k in desc)
    hvac_score = sum(1 for k in HVAC_KEYWORDS if k in desc)
    if ph_score > hvac_score:
        return "PH"
    if hvac_score > ph_score:
        return "HVAC"
    return "UNKNOWN"


class Categorizer:
    """Categorizes line items, preferring an external classifier when given one."""

    def __init__(self, classifier: Optional[CategoryClassifier] = None):
        self.classifier = classifier

    def categorize(self, description: Optional[str]) -> str:
        if self.classifier is not None and description:
            try:
                answer = self.classifier(description)
            except Exception as e:
                logger.warning("Category classifier failed, using keywords: %s", e)
            else:
                if answer in CATEGORIES:
                    return answer
                logger.debug("Classifier answered %r for %r -- ignored", answer, description)
        return categorize_item(description)


_PROMPT = """Classify this supplier invoice line item for a plumbing, heating and HVAC contractor.

Answer with exactly one word:
  PH       -- plumbing or hydronic heating (pipe, fittings, water heaters, valves, fixtures)
  HVAC     -- air conditioning, ventilation, furnaces, ductwork, refrigeration, filters
  UNKNOWN  -- anything else, or if you cannot tell

Line item: {description}"""


class LLMCategoryClassifier:
    """
    Asks any OpenAI-compatible chat endpoint for a one-word category.

    Returns the raw (upper-cased) answer; Categorizer decides whether to
    trust it.
    """

    def __init__(self, model: str, base_url: str, api_key: str):
        self.model    = model
        self.base_url = base_url
        self.api_key  = api_key
        self._client  = None

    def _get_client(self):
        """Lazily initialise the OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(base_url=self.base_url, api_key=self.api_key)
        return self._client

    def __call__(self, description: str) -> str:
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": _PROMPT.format(description=description)}],
            temperature=0.0,
            max_tokens=5,
        )
        raw = (response.choices[0].message.content or "").strip()
        word = re.sub(r"[^A-Za-z]", "", raw.split()[0]) if raw else ""
        return word.upper()

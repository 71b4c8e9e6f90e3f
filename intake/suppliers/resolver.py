"""SupplierResolver: match an extracted issuing party against known suppliers.

Signals, strongest first: VAT id equality, IBAN equality, normalised name
equality, fuzzy name similarity (difflib.SequenceMatcher). An empty result
is not an error; it tells the caller to create a new supplier.
"""

import logging
import re
import unicodedata
from difflib import SequenceMatcher

from intake.extraction.identifiers import compact
from intake.extraction.schema import UNKNOWN_SUPPLIER
from intake.persistence.base import Supplier, SupplierRepository
from intake.pipeline.models import SupplierMatch
from intake.shared.config import Settings

logger = logging.getLogger(__name__)

VAT_SCORE = 1.0
IBAN_SCORE = 0.95
NAME_EQUAL_SCORE = 0.9
FUZZY_WEIGHT = 0.85
AGREEMENT_BONUS = 0.02

_UMLAUTS = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})
_LEGAL_SUFFIXES = re.compile(
    r"\b(?:gmbh\s*&\s*co\.?\s*kg|gmbh|ag|kg|ohg|ug|e\.?\s?k|ltd|inc|corp|co|mbh|haftungsbeschraenkt)\b\.?"
)


def normalize_name(name: str | None) -> str:
    """Casefold, fold umlauts, drop legal-entity suffixes and punctuation."""
    if not name:
        return ""
    folded = name.casefold().translate(_UMLAUTS)
    folded = unicodedata.normalize("NFKD", folded)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    folded = _LEGAL_SUFFIXES.sub(" ", folded)
    folded = re.sub(r"[^\w\s]", " ", folded)
    return " ".join(folded.split())


class SupplierResolver:
    """Ranks the company's suppliers by how well they match an extracted identity."""

    def __init__(self, suppliers: SupplierRepository, settings: Settings) -> None:
        self.suppliers = suppliers
        self.threshold = settings.supplier_match_threshold

    def resolve(
        self,
        company_id: str,
        name: str,
        vat_id: str | None = None,
        iban: str | None = None,
    ) -> list[SupplierMatch]:
        """Return matches above the threshold, best first."""
        wanted_name = normalize_name(name) if name != UNKNOWN_SUPPLIER else ""
        wanted_vat = compact(vat_id)
        wanted_iban = compact(iban)

        matches = []
        for supplier in self.suppliers.list_suppliers(company_id):
            match = self._score(supplier, wanted_name, wanted_vat, wanted_iban)
            if match is not None and match.match_score >= self.threshold:
                matches.append(match)
        matches.sort(key=lambda m: m.match_score, reverse=True)

        if matches:
            best = matches[0]
            logger.info(
                f"Supplier '{name}' matched {best.supplier_id} "
                f"(score={best.match_score:.2f}, {best.match_reason})"
            )
        else:
            logger.info(f"No supplier match for '{name}', treating as new supplier")
        return matches

    def _score(
        self, supplier: Supplier, wanted_name: str, wanted_vat: str, wanted_iban: str
    ) -> SupplierMatch | None:
        signals: list[tuple[float, str]] = []
        if wanted_vat and wanted_vat == compact(supplier.vat_id):
            signals.append((VAT_SCORE, "VAT id equal"))
        if wanted_iban and wanted_iban == compact(supplier.iban):
            signals.append((IBAN_SCORE, "IBAN equal"))
        if wanted_name:
            existing_name = normalize_name(supplier.name)
            if existing_name and existing_name == wanted_name:
                signals.append((NAME_EQUAL_SCORE, "name equal"))
            elif existing_name:
                ratio = SequenceMatcher(None, wanted_name, existing_name).ratio()
                if ratio > 0:
                    signals.append((ratio * FUZZY_WEIGHT, f"name similarity {ratio:.2f}"))
        if not signals:
            return None

        signals.sort(key=lambda s: s[0], reverse=True)
        agreeing = sum(1 for value, _ in signals[1:] if value >= self.threshold)
        combined = min(1.0, signals[0][0] + AGREEMENT_BONUS * agreeing)
        return SupplierMatch(
            supplier_id=supplier.id,
            match_score=round(combined, 4),
            match_reason=", ".join(reason for _, reason in signals),
            supplier_snapshot=supplier.model_dump(mode="json"),
        )

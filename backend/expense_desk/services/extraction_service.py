"""Receipt analysis service using OpenAI chat completions.

This service turns a receipt image or PDF into a ``ReceiptAnalysis``.
The upload is normalised first (PDF -> first page image, EXIF
orientation, downscaling) and sent as a base64 data URI in a single
chat completion that is constrained by a strict JSON schema. The raw
answer is then passed through :func:`reconcile_analysis`, which fixes
the arithmetic and fills defaults so that downstream code can rely on
``amount_net + tax_vat == amount_gross`` (within one cent).

There is no retry: any failure (missing API key, upstream error, empty
or malformed output) raises :class:`ReceiptAnalysisError`, which the
API maps to a generic 500 response.

Diagnostic logging can be enabled by setting ``EXTRACTION_DEBUG=1``.
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import logging
import math
from typing import Any, Dict, Optional

from openai import AsyncOpenAI
from pydantic import ValidationError

from expense_desk.core.config import settings
from expense_desk.core.observability import sentry_breadcrumb
from expense_desk.models.enums import CategorySuggestion, PaymentMethod
from expense_desk.models.schemas import ReceiptAnalysis
from expense_desk.utils.helpers import coerce_iso_date
from expense_desk.utils.image_processing import UnreadableDocumentError, prepare_receipt_image
from expense_desk.utils.prompts import get_default_extraction_prompt, get_user_instruction
from expense_desk.utils.sanitization import clean_vendor_name

logger = logging.getLogger(__name__)

# Tolerance, in currency units, between net + VAT and gross
AMOUNT_TOLERANCE = 0.01


def _nullable(json_type: str, description: str) -> Dict[str, Any]:
    return {"type": [json_type, "null"], "description": description}


RECEIPT_ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "vendor": {"type": "string", "description": "Nombre del comercio o proveedor"},
        "expense_date": {"type": "string", "description": "Fecha en formato YYYY-MM-DD"},
        "amount_gross": {"type": "number", "description": "Importe total con IVA"},
        "tax_vat": {"type": "number", "description": "Importe del IVA (0 si no aplica)"},
        "amount_net": {"type": "number", "description": "Importe sin IVA"},
        "currency": {"type": "string", "description": "Código de moneda (EUR por defecto)"},
        "category_suggestion": {"type": "string", "enum": [c.value for c in CategorySuggestion]},
        "payment_method_guess": {"type": "string", "enum": [p.value for p in PaymentMethod]},
        "project_code_guess": _nullable("string", "Código de proyecto si se puede identificar"),
        "notes": _nullable("string", "Notas adicionales extraídas del ticket"),
    },
    "required": [
        "vendor",
        "expense_date",
        "amount_gross",
        "tax_vat",
        "amount_net",
        "currency",
        "category_suggestion",
        "payment_method_guess",
        "project_code_guess",
        "notes",
    ],
    "additionalProperties": False,
}


class ReceiptAnalysisError(RuntimeError):
    """Raised when a receipt could not be analysed."""


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def reconcile_analysis(analysis: ReceiptAnalysis, today: Optional[dt.date] = None) -> ReceiptAnalysis:
    """Return a copy of ``analysis`` with coherent amounts and defaults filled.

    - the total must be a finite positive amount and VAT must not be
      negative, otherwise ``ReceiptAnalysisError`` is raised;
    - non-finite VAT or net amounts count as missing;
    - missing VAT becomes 0 and a missing net amount becomes gross - VAT;
    - when ``|net + VAT - gross|`` exceeds one cent the net amount is
      recomputed from gross and VAT;
    - the vendor name is cleaned (``Comercio no identificado`` when blank);
    - a date not written as ``YYYY-MM-DD`` becomes today;
    - a blank currency becomes the default currency.
    """
    gross = _finite_or_none(analysis.amount_gross)
    if gross is None or round(gross, 2) <= 0:
        raise ReceiptAnalysisError(f"model returned an unusable total: {analysis.amount_gross!r}")
    gross = round(gross, 2)

    vat = _finite_or_none(analysis.tax_vat)
    vat = round(vat, 2) if vat is not None else 0.0
    if vat < 0:
        raise ReceiptAnalysisError(f"model returned a negative VAT amount: {vat}")

    net = _finite_or_none(analysis.amount_net)
    net = round(net, 2) if net is not None else round(gross - vat, 2)

    if abs(net + vat - gross) > AMOUNT_TOLERANCE:
        logger.warning(
            "incoherent receipt amounts net=%s vat=%s gross=%s; recomputing net",
            net,
            vat,
            gross,
        )
        net = round(gross - vat, 2)

    currency = (analysis.currency or "").strip().upper() or settings.DEFAULT_CURRENCY

    return analysis.model_copy(
        update={
            "vendor": clean_vendor_name(analysis.vendor),
            "expense_date": coerce_iso_date((analysis.expense_date or "").strip(), today=today),
            "amount_gross": gross,
            "tax_vat": vat,
            "amount_net": net,
            "currency": currency,
            "notes": (analysis.notes or "").strip() or None,
            "project_code_guess": (analysis.project_code_guess or "").strip() or None,
        }
    )


def parse_analysis(raw: str | None) -> ReceiptAnalysis:
    """Parse the model's JSON answer into a ``ReceiptAnalysis``."""
    if not raw:
        raise ReceiptAnalysisError("empty model output")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ReceiptAnalysisError(f"model output is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ReceiptAnalysisError("model output is not a JSON object")
    try:
        analysis = ReceiptAnalysis.model_validate(data)
    except ValidationError as exc:
        raise ReceiptAnalysisError(f"model output does not match schema: {exc}") from exc
    if not math.isfinite(analysis.amount_gross) or analysis.amount_gross <= 0:
        raise ReceiptAnalysisError(f"model returned an unusable total: {analysis.amount_gross!r}")
    if analysis.tax_vat is not None and math.isfinite(analysis.tax_vat) and analysis.tax_vat < 0:
        raise ReceiptAnalysisError(f"model returned a negative VAT amount: {analysis.tax_vat}")
    return analysis


class ExtractionService:
    """Service responsible for analysing receipt uploads."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None) -> None:
        self._client = client
        self.model: str = model or settings.EXTRACTION_MODEL
        self.debug: bool = bool(settings.EXTRACTION_DEBUG)
        if self.debug:
            logger.info("[extraction:init] model=%s", self.model)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ReceiptAnalysisError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    def _image_to_data_uri(self, data: bytes, mime: str) -> str:
        return f"data:{mime};base64,{base64.b64encode(data).decode('utf-8')}"

    async def _complete(self, data_uri: str) -> str | None:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": get_default_extraction_prompt()},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": get_user_instruction()},
                        {"type": "image_url", "image_url": {"url": data_uri, "detail": "auto"}},
                    ],
                },
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": "ReceiptAnalysis",
                    "schema": RECEIPT_ANALYSIS_SCHEMA,
                    "strict": True,
                },
            },
        )
        if not response.choices:
            return None
        return response.choices[0].message.content

    async def analyze(
        self,
        file_data: bytes,
        filename: str,
        content_type: str,
        today: Optional[dt.date] = None,
    ) -> ReceiptAnalysis:
        """Analyse one receipt and return reconciled fields.

        Raises:
            ReceiptAnalysisError: on any failure to obtain a usable answer.
        """
        if self.debug:
            logger.info("[extraction] start filename=%s size=%d type=%s", filename, len(file_data), content_type)
        try:
            image, mime = prepare_receipt_image(file_data, content_type)
        except UnreadableDocumentError as exc:
            raise ReceiptAnalysisError(str(exc)) from exc

        try:
            raw = await self._complete(self._image_to_data_uri(image, mime))
        except ReceiptAnalysisError:
            raise
        except Exception as exc:
            logger.error("receipt analysis upstream call failed: %s", exc)
            raise ReceiptAnalysisError(f"upstream model call failed: {exc}") from exc

        if self.debug:
            logger.info("[extraction] raw output=%s", raw)
        analysis = reconcile_analysis(parse_analysis(raw), today=today)
        sentry_breadcrumb("extraction", "receipt analysed", data={"model": self.model})
        logger.info(
            "receipt analysed filename=%s vendor=%s gross=%s",
            filename,
            analysis.vendor,
            analysis.amount_gross,
        )
        return analysis


_service: Optional[ExtractionService] = None


def get_extraction_service() -> ExtractionService:
    """FastAPI dependency returning the process-wide extraction service."""
    global _service
    if _service is None:
        _service = ExtractionService()
    return _service

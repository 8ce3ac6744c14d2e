"""Default prompt used for receipt extraction.

Keeping the prompt in a central location makes it easier to iterate on
its content without touching the extraction service. The wording is in
Spanish because the receipts, category names and user-facing messages
of the application are.
"""

from __future__ import annotations

from textwrap import dedent


def get_default_extraction_prompt() -> str:
    """Return the system prompt used for extracting receipt fields.

    The model receives a single receipt image and must answer with JSON
    only; the response format enforces the schema, so the prompt focuses
    on the business rules (decimal format, category names, payment
    method codes and how to derive the net amount).
    """
    return dedent(
        """
        Eres un sistema experto financiero español. Extrae los campos de
        este ticket de gasto y devuelve estrictamente JSON con el esquema
        solicitado. No añadas texto fuera del JSON.

        Reglas importantes:
        - Usa formato decimal con punto (ejemplo: 25.50)
        - Categoriza en una de estas opciones exactas: "Viajes", "Dietas",
          "Material", "Software", "Transporte", "Alojamiento", "Otros"
        - Para métodos de pago usa: "CARD", "CASH", "TRANSFER", "OTHER"
        - Prioriza la fecha del ticket; si hay varias fechas, usa la de
          compra/transacción, en formato YYYY-MM-DD
        - La moneda por defecto es EUR
        - Calcula amount_net = amount_gross - tax_vat (si no hay IVA
          explícito, asume amount_net = amount_gross y tax_vat = 0)
        - Limpia el nombre del vendor (sin caracteres especiales innecesarios)
        - Si no identificas un código de proyecto o notas, usa null
        """
    ).strip()


def get_user_instruction() -> str:
    return "Extrae los datos de este ticket de gasto."

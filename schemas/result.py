"""Result schema.

The shape the completion gateway is instructed to return. The orchestrator
does not enforce it (the COMPLETED payload is whatever the gateway produced,
or {"raw_response": ...}); the display layer uses it to render a result
nicely when it fits.
"""

from pydantic import BaseModel


class CalculationResult(BaseModel):
    """Structured answer produced by the gateway for one workflow.

    Attributes:
        calculation: The math expression that was evaluated (e.g. "5+3").
        numeric_result: Numeric value of the calculation.
        text_result: The numeric result in English words (e.g. "eight").
        explanation: Brief step-by-step account of how the answer was reached.
    """

    calculation: str
    numeric_result: float
    text_result: str
    explanation: str = ""

from __future__ import annotations

import json
import logging
from typing import Optional, TypeVar
from urllib.error import URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel, ValidationError

from config import Settings, get_settings
from schemas import (
    BudgetSnapshot,
    InitialBudgetIn,
    InitialBudgetOut,
    OptimizationsOut,
    OverspendingOut,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class AdvisorUnavailable(RuntimeError):
    pass


class AdvisorClient:
    """Thin JSON client for the remote prompt flows. No retries."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def suggest_budget_optimizations(self, snapshot: BudgetSnapshot) -> OptimizationsOut:
        payload = self._post(
            "suggest-budget-optimizations", snapshot.model_dump(by_alias=True)
        )
        return _parse(OptimizationsOut, payload)

    def identify_potential_overspending(
        self, snapshot: BudgetSnapshot, payment_highlighting: dict[str, bool]
    ) -> OverspendingOut:
        body = {
            "income": snapshot.income,
            "budget": snapshot.budget_allocations,
            "spending": snapshot.actual_spending,
            "paymentHighlighting": payment_highlighting,
        }
        payload = self._post("identify-potential-overspending", body)
        return _parse(OverspendingOut, payload)

    def generate_initial_budget(self, data: InitialBudgetIn) -> InitialBudgetOut:
        payload = self._post("generate-initial-budget", data.model_dump(by_alias=True))
        return _parse(InitialBudgetOut, payload)

    def _post(self, flow: str, body: dict[str, object]) -> object:
        url = f"{self.settings.advisor_url}/{flow}"
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.settings.advisor_api_key:
            headers["Authorization"] = f"Bearer {self.settings.advisor_api_key}"
        req = Request(
            url,
            data=json.dumps({"data": body}).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        logger.info(f"advisor_call: flow={flow}")
        try:
            with urlopen(req, timeout=self.settings.advisor_timeout_secs) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.warning(f"advisor_call_failed: flow={flow} error={exc!r}")
            raise AdvisorUnavailable(f"Advisor flow {flow} is unavailable") from exc

        # flow servers wrap the output as {"result": ...}
        if isinstance(payload, dict) and "result" in payload:
            return payload["result"]
        return payload


def _parse(model: type[ModelT], payload: object) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise AdvisorUnavailable("Unexpected advisor response") from exc

"""
Trade execution against the trading service and the trade-manager daemon.

Bets and position queries go to the trading service HTTP API; stop-loss and
take-profit rules are registered with the local trade-manager daemon. Order
placement never raises: failures come back as an unsuccessful
ExecutionResult so the caller can record the order as a PASS.
"""

import logging
from typing import Any, Optional

import requests

from signalbot.config import Config
from signalbot.models import ExecutionResult, TradeOrder
from signalbot.utils import ExecutionError, request_json, retry_with_backoff

# Configure module logger
logger = logging.getLogger(__name__)

STOP_LOSS = "STOP_LOSS"
TAKE_PROFIT = "TAKE_PROFIT"


class TradeExecutor:
    """HTTP client for placing bets and registering exit rules."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        trade_manager_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.api_url = (api_url or Config.TRADING_API_URL or "").rstrip("/")
        self.api_key = api_key or Config.TRADING_API_KEY
        self.trade_manager_url = (trade_manager_url or Config.TRADE_MANAGER_URL).rstrip("/")
        self.timeout = timeout or Config.API_TIMEOUT

        if not self.api_url:
            raise ValueError("TRADING_API_URL not configured")

    def _auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @retry_with_backoff(max_retries=2, initial_delay=2.0)
    def _post_bet(self, payload: dict) -> Any:
        data = request_json(
            "POST",
            f"{self.api_url}/api/skills/polymarket/bet",
            timeout=self.timeout,
            json=payload,
            headers=self._auth_headers(),
        )
        # A 200 can still carry an application-level rejection
        if isinstance(data, dict) and data.get("success") is False:
            raise ExecutionError(data.get("error") or "bet rejected by trading service")
        return data

    @retry_with_backoff(max_retries=2, initial_delay=1.0)
    def _post_rule(self, payload: dict) -> Any:
        return request_json(
            "POST",
            f"{self.trade_manager_url}/api/rules",
            timeout=self.timeout,
            json=payload,
            headers={"Content-Type": "application/json"},
        )

    @retry_with_backoff(max_retries=2, initial_delay=2.0)
    def _get_positions(self) -> Any:
        return request_json(
            "GET",
            f"{self.api_url}/api/skills/polymarket/positions",
            timeout=self.timeout,
            headers=self._auth_headers(),
        )

    def place_order(self, order: TradeOrder) -> ExecutionResult:
        """
        Place a bet for a TRADE order.

        Args:
            order: Order with decision TRADE and a positive size

        Returns:
            ExecutionResult; success carries the transaction or order hash
        """
        payload = {
            "marketId": order.market.condition_id,
            "outcome": order.direction,
            "amount": order.size,
            "price": order.entry_price,
        }

        try:
            data = self._post_bet(payload)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            body = e.response.text[:200] if e.response is not None else ""
            logger.error(f"Bet rejected for {order.market.condition_id}: HTTP {status} {body}")
            return ExecutionResult(success=False, error=f"HTTP {status}: {body}")
        except Exception as e:
            logger.error(f"Bet failed for {order.market.condition_id}: {e}", exc_info=True)
            return ExecutionResult(success=False, error=str(e))

        data = data if isinstance(data, dict) else {}
        tx_ref = data.get("txHash") or data.get("orderHash")
        logger.info(
            f"Placed {order.direction} bet of ${order.size} on {order.market.condition_id} "
            f"(tx={tx_ref})"
        )
        return ExecutionResult(success=True, tx_ref=tx_ref)

    def _set_rule(self, order: TradeOrder, rule_type: str, trigger_price: float) -> bool:
        payload = {
            "marketId": order.market.condition_id,
            "ruleType": rule_type,
            "triggerPrice": trigger_price,
            "action": {"type": "SELL_ALL"},
        }
        try:
            self._post_rule(payload)
        except Exception as e:
            logger.error(f"Failed to set {rule_type} for {order.market.condition_id}: {e}")
            return False

        logger.info(f"{rule_type} set at ${trigger_price:.2f} for {order.market.condition_id}")
        return True

    def set_exit_rules(self, order: TradeOrder) -> dict:
        """
        Register stop-loss and take-profit rules for an executed order.

        Failures are logged and reported in the result, never raised.

        Returns:
            {"stop_loss_set": bool, "take_profit_set": bool}
        """
        results = {"stop_loss_set": False, "take_profit_set": False}

        if order.stop_loss > 0:
            results["stop_loss_set"] = self._set_rule(order, STOP_LOSS, order.stop_loss)

        if order.take_profit > 0:
            results["take_profit_set"] = self._set_rule(order, TAKE_PROFIT, order.take_profit)

        if not all(results.values()):
            logger.warning(
                f"Exit rules incomplete for {order.market.condition_id}: "
                f"SL={results['stop_loss_set']}, TP={results['take_profit_set']}"
            )

        return results

    def get_open_positions(self) -> list[dict]:
        """Live positions from the trading service; empty on failure."""
        try:
            data = self._get_positions()
        except Exception as e:
            logger.warning(f"Could not fetch open positions: {e}")
            return []

        if isinstance(data, dict):
            data = data.get("positions", [])
        if not isinstance(data, list):
            return []
        return [p for p in data if isinstance(p, dict)]

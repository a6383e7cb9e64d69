"""
LLM prompts and structured output schemas used by the workflows.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional

_NUMBER = {"type": "number"}
_STRING = {"type": "string"}

BACKTEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "total_trades": _NUMBER,
        "winning_trades": _NUMBER,
        "losing_trades": _NUMBER,
        "final_capital": _NUMBER,
        "total_return": _NUMBER,
        "win_rate": _NUMBER,
        "avg_win": _NUMBER,
        "avg_loss": _NUMBER,
        "max_drawdown": _NUMBER,
        "sharpe_ratio": _NUMBER,
        "profit_factor": _NUMBER,
        "equity_curve": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"date": _STRING, "equity": _NUMBER},
            },
        },
        "trade_log": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "symbol": _STRING,
                    "entry_date": _STRING,
                    "exit_date": _STRING,
                    "action": _STRING,
                    "entry_price": _NUMBER,
                    "exit_price": _NUMBER,
                    "quantity": _NUMBER,
                    "pnl": _NUMBER,
                    "pnl_percentage": _NUMBER,
                    "reason": _STRING,
                },
            },
        },
    },
    "required": [
        "total_trades",
        "winning_trades",
        "losing_trades",
        "final_capital",
        "total_return",
        "win_rate",
        "sharpe_ratio",
        "profit_factor",
    ],
}

SIGNAL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "symbol": _STRING,
        "asset_type": {"type": "string", "enum": ["stock", "option", "future"]},
        "action": {"type": "string", "enum": ["buy", "sell", "buy_to_open", "sell_to_close"]},
        "current_price": _NUMBER,
        "entry_price": _NUMBER,
        "stop_loss": _NUMBER,
        "take_profit": _NUMBER,
        "quantity": _NUMBER,
        "confidence": _NUMBER,
        "rationale": _STRING,
    },
}

DISCOVERY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "strategies": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": _STRING,
                    "description": _STRING,
                    "strategy_type": {
                        "type": "string",
                        "enum": ["momentum", "mean_reversion", "breakout", "trend_following", "volatility", "custom"],
                    },
                    "timeframe": {"type": "string", "enum": ["15min", "1hour", "4hour", "daily", "weekly"]},
                    "indicators": {"type": "array", "items": _STRING},
                    "entry_conditions": _STRING,
                    "exit_conditions": _STRING,
                    "risk_per_trade": _NUMBER,
                    "max_position_size": _NUMBER,
                    "rationale": _STRING,
                    "expected_win_rate": _NUMBER,
                    "expected_sharpe": _NUMBER,
                },
            },
        },
    },
}

_RISK_GUIDANCE = {
    "conservative": "favor small losses and tight stops",
    "aggressive": "accept larger swings and wider stops",
}


def _join(values: Optional[Iterable[Any]]) -> str:
    return ", ".join(str(v) for v in (values or []))


def backtest_prompt(
    strategy: Mapping[str, Any],
    symbols: List[str],
    start_date: str,
    end_date: str,
    initial_capital: float,
) -> str:
    rules = strategy.get("rules") or {}
    return (
        "Simulate a historical backtest and report realistic, conservative results.\n"
        f"Strategy: {strategy.get('name')} ({strategy.get('strategy_type')}, {strategy.get('timeframe')})\n"
        f"Indicators: {_join(strategy.get('indicators'))}\n"
        f"Entry: {rules.get('entry_conditions')}\n"
        f"Exit: {rules.get('exit_conditions')}\n"
        f"Risk per trade: {rules.get('risk_per_trade')}%  Max position: {rules.get('max_position_size')}\n"
        f"Symbols: {_join(symbols)}\n"
        f"Period: {start_date} to {end_date}\n"
        f"Initial capital: ${initial_capital:,.2f}\n"
        "Include commissions and slippage. Return an equity curve and an itemized trade log."
    )


def signal_prompt(strategy: Mapping[str, Any]) -> str:
    rules = strategy.get("rules") or {}
    return (
        "Produce one actionable trading signal for the strategy below using current market conditions.\n"
        f"Strategy: {strategy.get('name')} ({strategy.get('strategy_type')}, {strategy.get('timeframe')})\n"
        f"Asset types: {_join(strategy.get('asset_types'))}\n"
        f"Indicators: {_join(strategy.get('indicators'))}\n"
        f"Entry: {rules.get('entry_conditions')}\n"
        "Give symbol, current and entry price, stop loss, take profit, quantity, "
        "confidence from 0 to 100 and the reasoning."
    )


def discovery_prompt(
    analysis_type: str,
    focus_area: str,
    risk_tolerance: str,
    count: int,
    historical_insights: str = "",
) -> str:
    guidance = _RISK_GUIDANCE.get(risk_tolerance, "keep risk balanced")
    lines = [
        f"Propose {count} distinct algorithmic trading strategies.",
        f"Focus: {analysis_type}. Asset class: {focus_area}. Risk tolerance: {risk_tolerance} ({guidance}).",
    ]
    if historical_insights:
        lines.append("Past backtests that performed well:")
        lines.append(historical_insights)
    lines.append(
        "Each strategy needs a name, description, type, timeframe, two to four indicators, "
        "entry and exit conditions, risk per trade, max position size, rationale, "
        "expected win rate and expected Sharpe ratio."
    )
    return "\n".join(lines)

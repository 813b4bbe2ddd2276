"""
Trader orchestration package.

`runner.TradingLoop` drives the poll -> analyse -> validate -> route cycle and
`state.AppState` holds what the status API exposes. Entrypoints (`main.py`,
`api_server.py`) stay at the repo root and only wire these together.
"""

"""
LLM Chess Arena package.

Components:
- orchestrator: turn-by-turn game loop (TurnOrchestrator) with pause/resume, forfeit and draw offers
- timer: per-player chess clocks (Fischer/Bronstein/simple) with an async expiry watcher
- error_policy/errors: tagged failures and their classification into retry/forfeit/pause/end
- referee: python-chess rules engine, PGN export
- llm_client/llm_player/random_player: move generation over an OpenAI-compatible endpoint (OpenRouter by default)
- prompting/move_validator/agent_normalizer: prompt build and JSON move parsing/salvage
- storage: config snapshots and game export
- game: single-game wiring, metrics and summary
"""
# Package exports are intentionally minimal; import modules directly as needed.

"""Package initialization for n8n-prompt-chains.

Compiles authored prompt chains into n8n workflows, deploys them and runs
them through n8n's REST API, persisting each execution's outcome. The CLI is
available as `python -m n8n_prompt_chains`.
"""

__all__ = []

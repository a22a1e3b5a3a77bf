"""
Lexia — intent routing and streaming orchestration for the legal assistant.

Subpackages:
- llm: routing registry, model resolver, tools, streaming orchestrator
- controller: intent classifier, context enrichment, prompts, decisions
- billing: credit costs and monthly quota accounting
- config: YAML overrides for the routing tables
- integrations: Supabase data store
- observability: structured logging with per-request trace ids
"""

"""
LLM Abstraction Layer — Intent routing, tools and fallback-aware streaming.

Modules:
- llm_config: Intents, model descriptors, routing rules (immutable tables)
- resolver: "<family>/<model>" strings → ModelHandle
- tools: deterministic and semantic tool registry
- streaming: ProviderStreamer / TokenStream over the async SDK clients
- orchestrator: StreamingOrchestrator, one retry on the fallback model
"""

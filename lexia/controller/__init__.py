"""
Lexia Controller — decides how a request is handled, never calls a model.

Modules:
- classifier: rule-based intent classification
- context: case context enrichment from the data store
- prompts: system prompt assembly
- controller: PendingDecision → ControllerDecision, audit entries
"""

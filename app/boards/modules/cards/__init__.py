"""
Cards module.

Scope:
- Boards and cards, cards ordered within a board by the positioning engine
- Create/move/reparent/rename/destroy cards
- Open/closed state kept as an optional closure record (who, when)
"""

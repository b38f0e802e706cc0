"""
Feature modules live under this package.

Keep module boundaries clean: `positioning` is the framework-free ordering
engine; `cards` owns the board/card models, service layer and JSON routes, and
reuses platform primitives (audit, DB session) plus the engine.
"""

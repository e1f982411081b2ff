"""
Domain core: models, state machine, validators and rules.
"""

"""
Graph store access: data model, schema registry, engines and the Store Session.
"""

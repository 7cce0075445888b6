"""Discord adapter.

Embeds, views and modals live in :mod:`.builders`; channel routing in
:mod:`.bot`; interaction handling and the messaging surfaces in :mod:`.handlers`.
"""

"""Sleeve rebalancing and tax-loss-harvesting engine.

The computation core (``rebalancer.domain`` and ``rebalancer.services``)
does not touch the ORM; only the wash-sale store and account locks need a
configured Django project.
"""

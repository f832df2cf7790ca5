"""Upstream feed — polling, envelope validation, and normalization.

Learn: The pipeline is a strict two-stage decode. The response body is
decoded to a generic JSON document first, then validated and projected
into typed MatchRecords. Anything that does not fit is dropped (per event)
or the whole cycle abstains (per envelope). Nothing is partially recovered.
"""

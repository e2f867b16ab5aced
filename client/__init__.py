"""Streaming client package: transport, event routing, session state.

A search opens one streaming POST, decodes its event-stream frames, classifies
them into match and enrichment events, and folds those into a query session
that presentation code observes through immutable snapshots.
"""

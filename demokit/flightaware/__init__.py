"""Simulated flight departures, the /flights command handler and its subscriptions."""
"""navsim: synthetic portfolio valuation and NAV propagation."""

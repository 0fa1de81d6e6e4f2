"""Historical replay against a plain DCA baseline."""

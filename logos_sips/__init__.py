"""SIPS supply-point lookup against the Logos Energia CRM portal."""

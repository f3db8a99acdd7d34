"""Wire formats: variant lists, text blocks, outbound packets."""

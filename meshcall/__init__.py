"""Full-mesh voice rooms over a signaling relay."""

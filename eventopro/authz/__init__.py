"""Authorization layer.

Route policies ("any signed-in user" / "admin only") and the privileged
role-promotion operation that is gated by them.
"""

"""Authentication.

Learn: Users arrive with a JWT issued by the HR workspace. REST calls
send it as a Bearer header, the /ws channel as a ?token= query param.
Both resolve to a user id that scopes every query.
"""

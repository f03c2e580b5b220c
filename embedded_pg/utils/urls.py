"""Connection string helpers."""

from typing import Dict, Mapping, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

JDBC_URL_FORMAT = "jdbc:postgresql://{host}:{port}/{database}?user={user}"


def jdbc_url(
    port: int, database: str, user: str, host: str = "localhost"
) -> str:
    """JDBC-style URL, the form most config files for these databases expect."""
    return JDBC_URL_FORMAT.format(host=host, port=port, database=database, user=user)


def libpq_uri(
    port: int,
    database: str,
    user: str,
    password: Optional[str] = None,
    host: str = "localhost",
    options: Optional[Mapping[str, str]] = None,
) -> str:
    """``postgresql://`` URI accepted by libpq and psycopg."""
    userinfo = quote(user, safe="")
    if password:
        userinfo += ":" + quote(password, safe="")
    uri = f"postgresql://{userinfo}@{host}:{port}/{quote(database, safe='')}"
    if options:
        uri += "?" + urlencode(dict(options))
    return uri


def add_credentials(url: str, user: str, password: Optional[str] = None) -> str:
    """Set user (and password) query parameters, replacing existing ones."""
    scheme_prefix = ""
    if url.startswith("jdbc:"):
        scheme_prefix, url = "jdbc:", url[len("jdbc:") :]
    parts = urlsplit(url)
    params: Dict[str, str] = dict(parse_qsl(parts.query, keep_blank_values=True))
    params["user"] = user
    if password is not None:
        params["password"] = password
    else:
        params.pop("password", None)
    return scheme_prefix + urlunsplit(parts._replace(query=urlencode(params)))

"""
SQL Server connections through pyodbc
"""

import struct
import logging

import pyodbc

logger = logging.getLogger(__name__)

# msodbcsql pre-connect attribute carrying an Entra ID access token
SQL_COPT_SS_ACCESS_TOKEN = 1256


def pack_access_token(token):
    """Encode a bearer token the way the ODBC driver expects it: UTF-16-LE with a 4 byte length prefix"""
    token_bytes = token.encode('utf-16-le')
    return struct.pack(f'<I{len(token_bytes)}s', len(token_bytes), token_bytes)


def build_connection_string(server, database, driver, username=None, password=None,
                            trusted=False, trust_server_certificate=False):
    parts = [
        f"DRIVER={{{driver}}}",
        f"SERVER={server}",
        f"DATABASE={database}",
        "Encrypt=yes",
        f"TrustServerCertificate={'yes' if trust_server_certificate else 'no'}",
    ]
    if username:
        parts.append(f"UID={username}")
        parts.append(f"PWD={{{password}}}")
    elif trusted:
        parts.append("Trusted_Connection=yes")
    return ';'.join(parts) + ';'


def connect(server, database='master', *, driver, username=None, password=None, access_token=None,
            trust_server_certificate=False, timeout=None, autocommit=True):
    """Open a connection; an access token wins over a SQL login, which wins over Windows auth.

    BACKUP and RESTORE refuse to run inside a user transaction, so autocommit is on by default.
    """
    conn_str = build_connection_string(
        server, database, driver,
        username=None if access_token else username,
        password=password,
        trusted=not access_token and not username,
        trust_server_certificate=trust_server_certificate,
    )
    kwargs = {'autocommit': autocommit}
    if access_token:
        kwargs['attrs_before'] = {SQL_COPT_SS_ACCESS_TOKEN: pack_access_token(access_token)}

    logger.debug(f"Connecting to {server}/{database}")
    conn = pyodbc.connect(conn_str, **kwargs)
    if timeout:
        conn.timeout = timeout
    return conn


def _message_text(message):
    # pyodbc yields ('[01000] (3211)', '[Microsoft][ODBC Driver 18 for SQL Server][SQL Server]10 percent processed.')
    text = message[1] if isinstance(message, tuple) else message
    return str(text).rsplit(']', 1)[-1].strip()


def execute_statement(conn, sql, params=(), on_message=logger.info):
    """Run one batch to completion and return the rows of its first result set as dicts.

    Every result set is drained, otherwise the driver returns before a BACKUP or RESTORE
    has actually finished. Informational messages (STATS progress) go to on_message.
    """
    cursor = conn.cursor()
    try:
        cursor.execute(sql, *params)
        rows = None
        while True:
            for message in cursor.messages or []:
                on_message(_message_text(message))
            if rows is None and cursor.description:
                columns = [column[0] for column in cursor.description]
                rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
            if not cursor.nextset():
                break
        return rows or []
    finally:
        cursor.close()

import sqlite3
from contextlib import contextmanager

from enum import StrEnum
import os.path,logging,json
import datetime


class DbPathEnum(StrEnum):
    HOME="./data/home_service.db"
    LOGS="./data/home_service_logs.db"

CONNECTION_TIMEOUT=30 #seconds waited on a locked database before failing

default_configuration_values = {
    "rule_engine_url": ("http://localhost:8080/rule", ""),
    "rule_engine_timeout": ("10", "s"),
    "lock_timeout": ("30", "s"),
    "host": ("0.0.0.0", ""),
    "port": ("8000", ""),
    "log_level": ("info", "")
}

DEVICE_COLUMNS=(
    "device.id AS id, device.name AS name, device.user_id AS userId, device.home_id AS homeId, "
    "device.area_id AS areaId, device.mac AS mac, "
    "device.type_id AS typeId, device.type_name AS typeName, "
    "device.category_id AS catId, device.category_name AS catName, "
    "device.family_id AS familyId, device.family_name AS familyName, "
    "device.connection_id AS connectionId, device.connection_name AS connectionName, "
    "device.vendor_id AS vendorId, device.vendor_name AS vendorName, "
    "device.parent_id AS parentId, device.extra AS extra, device.logo AS logo, device.position AS pos"
)

AUTOMATION_COLUMNS=(
    "id, home_id AS homeId, user_id AS userId, app_code AS appCode, hc_id AS hcId, hc_info AS hcInfo, "
    "name, logo, position, type, logic, active, gmt AS GMT, trigger, input_ids AS inputIds, "
    "output_ids AS outputIds, raw, created_at AS createdAt, created_by AS createdBy, "
    "updated_at AS updatedAt, updated_by AS updatedBy"
)

AUTOMATION_JSON_FIELDS=["hcInfo","trigger","inputIds","outputIds","raw"]

logger = logging.getLogger(__name__)


def now_timestamp() -> int:
    return int(datetime.datetime.now().replace(microsecond=0).timestamp())

def row_to_dict(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    data = {}
    for idx, col in enumerate(cursor.description):
        data[col[0]] = row[idx]
    return data

@contextmanager
def get_db_connection(db_path:str=DbPathEnum.HOME):
    """
    Context manager for handling SQLite connections.
    Automatically manages connection opening and closing. Errors are logged,
    rolled back and raised again to the caller.

    :param db_path: Path to the SQLite database.
    :yield: SQLite connection object.
    """
    connection = None
    try:
        connection = sqlite3.connect(db_path,timeout=CONNECTION_TIMEOUT,check_same_thread=False)
        connection.row_factory = row_to_dict
        yield connection
    except sqlite3.Error as e:
        logger.error(f"Error while using the database {db_path}: {e}")
        if connection:
            connection.rollback()
        raise
    finally:
        if connection:
            connection.close()

@contextmanager
def get_db_transaction(db_path:str=DbPathEnum.HOME):
    """
    Opens a connection and starts a write transaction on it.
    Nothing is persisted unless the caller commits explicitly; whatever is
    still pending when the block ends (or raises) is rolled back.
    """
    with get_db_connection(db_path) as con:
        con.execute("BEGIN IMMEDIATE")
        try:
            yield con
        finally:
            if con.in_transaction:
                con.rollback()

def table_exists(db_path, table_name):
    """Check if a table exists in the SQLite database."""
    with get_db_connection(db_path) as con:
        cur = con.cursor()
        cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table_name,))
        return cur.fetchone() is not None

def initialize_default_configuration_values(db_path:str, defaults: dict):
    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()
        for key, (value, unit) in defaults.items():
            cursor.execute('''
            INSERT OR IGNORE INTO Configuration (key, value, unit)
            VALUES (?, ?, ?)
            ''', (key, value, unit))
        conn.commit()


def initialize_database(db_path:str=DbPathEnum.HOME,logs_db_path:str=DbPathEnum.LOGS):
    home_db_tables = {
        "Configuration": 'CREATE TABLE "Configuration" ("key" TEXT NOT NULL, "value" TEXT NOT NULL, "unit" TEXT, PRIMARY KEY("key"));',
        "User": 'CREATE TABLE "User" ("id" TEXT NOT NULL, "name" TEXT, "email" TEXT, PRIMARY KEY("id"));',
        "Home": 'CREATE TABLE "Home" ("id" TEXT NOT NULL, "user_id" TEXT NOT NULL, "app_code" TEXT NOT NULL, "name" TEXT, "is_owner" INTEGER NOT NULL DEFAULT 0, PRIMARY KEY("id", "user_id", "app_code"));',
        "Area": 'CREATE TABLE "Area" ("id" TEXT NOT NULL, "user_id" TEXT NOT NULL, "home_id" TEXT NOT NULL, "app_code" TEXT NOT NULL, "name" TEXT, "logo" TEXT, "position" INTEGER, PRIMARY KEY("id", "user_id", "home_id"));',
        "Device": ('CREATE TABLE "Device" ("id" TEXT NOT NULL, "user_id" TEXT NOT NULL, "home_id" TEXT NOT NULL, "app_code" TEXT NOT NULL, '
                   '"area_id" TEXT, "name" TEXT, "mac" TEXT, "type_id" TEXT, "type_name" TEXT, "category_id" TEXT, "category_name" TEXT, '
                   '"family_id" TEXT, "family_name" TEXT, "connection_id" TEXT, "connection_name" TEXT, "vendor_id" TEXT, "vendor_name" TEXT, '
                   '"parent_id" TEXT, "extra" TEXT, "logo" TEXT, "position" INTEGER, PRIMARY KEY("id", "user_id", "home_id"));'),
        "Automation": ('CREATE TABLE "Automation" ("id" TEXT NOT NULL, "user_id" TEXT NOT NULL, "home_id" TEXT NOT NULL, "app_code" TEXT, '
                       '"hc_id" TEXT, "hc_info" TEXT NOT NULL DEFAULT \'{}\', "name" TEXT, "logo" TEXT, "position" INTEGER, "type" TEXT, '
                       '"logic" TEXT, "active" INTEGER, "gmt" TEXT, "trigger" TEXT NOT NULL DEFAULT \'{}\', '
                       '"input_ids" TEXT NOT NULL DEFAULT \'[]\', "output_ids" TEXT NOT NULL DEFAULT \'[]\', "raw" TEXT NOT NULL DEFAULT \'{}\', '
                       '"created_at" INTEGER, "created_by" TEXT, "updated_at" INTEGER, "updated_by" TEXT, PRIMARY KEY("id", "user_id", "home_id"));')
    }

    logs_db_tables = {
        "Logs": 'CREATE TABLE "Logs" ("actor" TEXT NOT NULL,"event" TEXT NOT NULL,"target" TEXT,"payload" TEXT,"timestamp" INTEGER NOT NULL)'
    }

    databases = [
        (db_path, home_db_tables, "Home"),
        (logs_db_path, logs_db_tables, "Logs"),
    ]

    for path, tables, db_name in databases:
        folder=os.path.dirname(path)
        if folder and not os.path.exists(folder):
            os.makedirs(folder)

        missing_tables = [query for table, query in tables.items() if not table_exists(path, table)]

        if missing_tables:
            logger.info(f"{db_name} database is missing {len(missing_tables)} tables, running migration...")
            create_tables(path, missing_tables)
            logger.info(f"{db_name} database migration completed.")
        else:
            logger.info(f"All tables are present in {db_name} database, no migration needed.")

        with get_db_connection(path) as con:
            con.execute("PRAGMA journal_mode=WAL")

    logger.info(f"Checking if Configuration table contains all the default entries..")
    initialize_default_configuration_values(db_path, default_configuration_values)
    return True


def create_tables(databasePath:str,queriesList:list):
    success=True
    with get_db_connection(databasePath) as con:
        try:
            cur = con.cursor()
            for query in queriesList:
                cur.execute(query)
            con.commit()
        except sqlite3.Error as e:
            logger.error(f"An error occurred while creating tables for database {databasePath}: {e}")
            con.rollback()
            success=False
    return success


#region General DB operations
def fetch_one_element(db_path:str,query:str, params=None):
    """
    Executes a query to fetch a single element from the database.

    :param query: The SQL query to execute.
    :param params: Parameters for the SQL query (optional).
    :return: The first row of the query result as a dictionary, or None if an error occurs.
    """
    try:
        with get_db_connection(db_path) as con:
            cur = con.cursor()
            cur.execute(query, params or ())
            result = cur.fetchone()
            return result if result else None
    except sqlite3.Error as e:
        logger.error(f"An error occurred during fetch_one_element: {e}")
        return None

def fetch_multiple_elements(db_path:str,query:str, params=None):
    """
    Executes a query to fetch multiple elements from the database.

    :param query: The SQL query to execute.
    :param params: Parameters for the SQL query (optional).
    :return: The result as a list of dictionaries, or an empty list if an error occurs.
    """
    try:
        with get_db_connection(db_path) as con:
            cur = con.cursor()
            cur.execute(query, params or ())
            result = cur.fetchall()
            return result if result else []
    except sqlite3.Error as e:
        logger.error(f"An error occurred during fetch_multiple_elements: {e}")
        return []

def add_multiple_elements(db_path:str,query, data):
    """
    Adds multiple elements to the database using the provided query.

    :param query: The SQL query to execute.
    :param data: A list of tuples (or dictionaries for named parameters) containing the data to insert.
    :return: True if the elements were added successfully, False otherwise.
    """
    try:
        with get_db_connection(db_path) as con:
            cur = con.cursor()
            cur.executemany(query, data)
            con.commit()
            return cur.rowcount>0
    except sqlite3.Error as e:
        logger.error(f"An error occurred while adding elements: {e}")
        return False

def build_where(predicates:list[tuple[str,object]]) -> tuple[str,tuple]:
    '''
    Joins (clause,value) pairs with AND. Pairs whose value is None or "" are
    optional filters that were not supplied and are skipped.
    '''
    clauses=[]
    params=[]
    for clause,value in predicates:
        if value is None or value=="":
            continue
        clauses.append(clause)
        params.append(value)
    where=" AND ".join(clauses) if clauses else "1 = 1"
    return where,tuple(params)

#endregion

#region Configuration
def add_configuration_values(db_path:str,values_list:list):
    query = "INSERT INTO Configuration(key, value, unit) VALUES (?, ?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value, unit = excluded.unit"
    return add_multiple_elements(db_path,query,values_list)

def get_all_configuration_values(db_path:str):
    return fetch_multiple_elements(db_path,"SELECT key,value,unit FROM Configuration")

def get_configuration_value_by_key(db_path:str,key:str):
    query = "SELECT value FROM Configuration WHERE key = ?"
    return fetch_one_element(db_path,query,(key,)) or {"value":None}

#endregion

#region Users, homes and areas
def add_users(db_path:str,users_list:list):
    query = "INSERT INTO User(id, name, email) VALUES (?, ?, ?)"
    return add_multiple_elements(db_path,query,users_list)

def get_user_by_id(db_path:str,user_id:str):
    return fetch_one_element(db_path,"SELECT id,name,email FROM User WHERE id = ?",(user_id,))

def add_homes(db_path:str,homes_list:list):
    '''Each entry is (id, user_id, app_code, name, is_owner).'''
    query = "INSERT INTO Home(id, user_id, app_code, name, is_owner) VALUES (?, ?, ?, ?, ?)"
    return add_multiple_elements(db_path,query,homes_list)

def get_home_of_user(db_path:str,home_id:str,user_id:str,app_code:str):
    query = "SELECT id, user_id AS userId, app_code AS appCode, name, is_owner AS isOwner FROM Home WHERE id = ? AND user_id = ? AND app_code = ?"
    return fetch_one_element(db_path,query,(home_id,user_id,app_code))

def get_home_owner(db_path:str,home_id:str,app_code:str):
    query = "SELECT id, user_id AS userId, app_code AS appCode, name, is_owner AS isOwner FROM Home WHERE id = ? AND is_owner = 1 AND app_code = ?"
    return fetch_one_element(db_path,query,(home_id,app_code))

def delete_home_as_owner(con:sqlite3.Connection,home_id:str,app_code:str):
    for table in ["Automation","Device","Area"]:
        con.execute(f'DELETE FROM "{table}" WHERE home_id = ? AND app_code = ?',(home_id,app_code))
    con.execute('DELETE FROM "Home" WHERE id = ? AND app_code = ?',(home_id,app_code))

def delete_home_as_member(con:sqlite3.Connection,home_id:str,user_id:str,app_code:str):
    for table in ["Device","Area"]:
        con.execute(f'DELETE FROM "{table}" WHERE home_id = ? AND user_id = ? AND app_code = ?',(home_id,user_id,app_code))
    con.execute('DELETE FROM "Home" WHERE id = ? AND user_id = ? AND app_code = ?',(home_id,user_id,app_code))

def add_areas(db_path:str,areas_list:list):
    '''Each entry is (id, user_id, home_id, app_code, name).'''
    query = "INSERT INTO Area(id, user_id, home_id, app_code, name) VALUES (?, ?, ?, ?, ?)"
    return add_multiple_elements(db_path,query,areas_list)

def get_area(db_path:str,area_id:str,user_id:str,home_id:str,app_code:str):
    query = "SELECT id, name FROM Area WHERE id = ? AND user_id = ? AND home_id = ? AND app_code = ?"
    return fetch_one_element(db_path,query,(area_id,user_id,home_id,app_code))

#endregion

#region Devices
def device_from_row(row:dict|None):
    if row and row.get("extra"):
        row["extra"]=json.loads(row["extra"])
    return row

def add_devices(db_path:str,devices_list:list[dict]):
    columns=["id","user_id","home_id","app_code","area_id","name","mac","type_id","type_name",
             "category_id","category_name","family_id","family_name","connection_id","connection_name",
             "vendor_id","vendor_name","parent_id","extra","logo","position"]
    rows=[]
    for device in devices_list:
        row={c:device.get(c) for c in columns}
        if isinstance(row["extra"],dict):
            row["extra"]=json.dumps(row["extra"])
        rows.append(row)
    query = f"INSERT INTO Device({', '.join(columns)}) VALUES ({', '.join(':'+c for c in columns)})"
    return add_multiple_elements(db_path,query,rows)

def get_device_with_area(db_path:str,device_id:str,home_id:str,user_id:str,app_code:str):
    '''Device owned by the given user in the given home, with the name of its area.'''
    query=(f"SELECT {DEVICE_COLUMNS}, area.name AS areaName FROM Device device "
           "LEFT JOIN Area area ON area.id = device.area_id AND area.home_id = device.home_id AND area.user_id = device.user_id "
           "WHERE device.home_id = ? AND device.user_id = ? AND device.id = ? AND device.app_code = ?")
    return device_from_row(fetch_one_element(db_path,query,(home_id,user_id,device_id,app_code)))

def get_devices_of_candidates(db_path:str,device_id:str,home_id:str,app_code:str,user_ids:list[str]):
    '''All rows for a device id owned by any of the candidate users. Area name is not joined.'''
    user_ids=[u for u in user_ids if u]
    if not user_ids:
        return []
    placeholders=", ".join("?" for _ in user_ids)
    query=(f"SELECT {DEVICE_COLUMNS} FROM Device device "
           f"WHERE device.home_id = ? AND device.id = ? AND device.app_code = ? AND device.user_id IN ({placeholders})")
    return [device_from_row(r) for r in fetch_multiple_elements(db_path,query,(home_id,device_id,app_code,*user_ids))]

def get_device_for_deletion(db_path:str,device_id:str,home_id:str,app_code:str,user_id:str|None=None):
    where,params=build_where([
        ("id = ?",device_id),
        ("home_id = ?",home_id),
        ("app_code = ?",app_code),
        ("user_id = ?",user_id)])
    return fetch_multiple_elements(db_path,f"SELECT id, user_id AS userId, area_id AS areaId FROM Device WHERE {where}",params)

def delete_device(con:sqlite3.Connection,device_id:str,home_id:str,app_code:str,user_id:str|None=None):
    where,params=build_where([
        ("id = ?",device_id),
        ("home_id = ?",home_id),
        ("app_code = ?",app_code),
        ("user_id = ?",user_id)])
    return con.execute(f"DELETE FROM Device WHERE {where}",params).rowcount

#endregion

#region Automations
def automation_from_row(row:dict|None):
    if not row:
        return None
    for key in AUTOMATION_JSON_FIELDS:
        row[key]=json.loads(row[key]) if row.get(key) else ({} if key in ["hcInfo","trigger","raw"] else [])
    if row.get("active") is not None:
        row["active"]=bool(row["active"])
    return row

def insert_automation(con:sqlite3.Connection,automation:dict,created_at:int,created_by:str):
    query=('INSERT INTO Automation(id, user_id, home_id, app_code, hc_id, hc_info, name, logo, position, type, logic, active, gmt, '
           'trigger, input_ids, output_ids, raw, created_at, created_by) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)')
    params=(
        automation["id"],automation["userId"],automation["homeId"],automation["appCode"],
        automation.get("hcId"),json.dumps(automation.get("hcInfo") or {}),
        automation.get("name"),automation.get("logo"),automation.get("position"),
        automation.get("type"),automation.get("logic"),automation.get("active"),automation.get("GMT"),
        json.dumps(automation.get("trigger") or {}),json.dumps(automation.get("inputIds") or []),
        json.dumps(automation.get("outputIds") or []),json.dumps(automation.get("raw") or {}),
        created_at,created_by)
    con.execute(query,params)

def update_automation(con:sqlite3.Connection,automation:dict,updated_at:int,updated_by:str):
    query=('UPDATE Automation SET hc_id = ?, hc_info = ?, name = ?, logo = ?, position = ?, type = ?, logic = ?, active = ?, gmt = ?, '
           'trigger = ?, input_ids = ?, output_ids = ?, raw = ?, updated_at = ?, updated_by = ? WHERE id = ? AND app_code = ?')
    params=(
        automation.get("hcId"),json.dumps(automation.get("hcInfo") or {}),
        automation.get("name"),automation.get("logo"),automation.get("position"),
        automation.get("type"),automation.get("logic"),automation.get("active"),automation.get("GMT"),
        json.dumps(automation.get("trigger") or {}),json.dumps(automation.get("inputIds") or []),
        json.dumps(automation.get("outputIds") or []),json.dumps(automation.get("raw") or {}),
        updated_at,updated_by,automation["id"],automation["appCode"])
    return con.execute(query,params).rowcount

def delete_automation(con:sqlite3.Connection,automation_id:str,home_id:str,app_code:str):
    query="DELETE FROM Automation WHERE id = ? AND home_id = ? AND app_code = ?"
    return con.execute(query,(automation_id,home_id,app_code)).rowcount

def deactivate_automations(con:sqlite3.Connection,automation_ids:list[str],home_id:str,app_code:str,updated_at:int,updated_by:str):
    query=("UPDATE Automation SET active = 0, raw = json_set(raw, '$.active', json('false')), updated_at = ?, updated_by = ? "
           "WHERE id = ? AND home_id = ? AND app_code = ?")
    con.executemany(query,[(updated_at,updated_by,automation_id,home_id,app_code) for automation_id in automation_ids])

def get_automation(db_path:str,automation_id:str,home_id:str,app_code:str):
    query=f"SELECT {AUTOMATION_COLUMNS} FROM Automation WHERE id = ? AND home_id = ? AND app_code = ?"
    return automation_from_row(fetch_one_element(db_path,query,(automation_id,home_id,app_code)))

def get_scene(db_path:str,scene_id:str,user_id:str,home_id:str,app_code:str):
    query="SELECT id, name, user_id AS userId FROM Automation WHERE user_id = ? AND home_id = ? AND app_code = ? AND id = ?"
    return fetch_one_element(db_path,query,(user_id,home_id,app_code,scene_id))

def get_scenes_of_candidates(db_path:str,scene_id:str,home_id:str,app_code:str,user_ids:list[str]):
    user_ids=[u for u in user_ids if u]
    if not user_ids:
        return []
    placeholders=", ".join("?" for _ in user_ids)
    query=f"SELECT id, name, user_id AS userId FROM Automation WHERE home_id = ? AND app_code = ? AND id = ? AND user_id IN ({placeholders})"
    return fetch_multiple_elements(db_path,query,(home_id,app_code,scene_id,*user_ids))

def search_automations(db_path:str,home_id:str,app_code:str,automation_id:str|None=None,name:str|None=None,
                       input_id:str|None=None,output_id:str|None=None):
    where,params=build_where([
        ("id = ?",automation_id),
        ("home_id = ?",home_id),
        ("app_code = ?",app_code),
        ("name = ?",name),
        ("EXISTS (SELECT 1 FROM json_each(Automation.input_ids) WHERE json_each.value = ?)",input_id),
        ("EXISTS (SELECT 1 FROM json_each(Automation.output_ids) WHERE json_each.value = ?)",output_id)])
    query=f"SELECT {AUTOMATION_COLUMNS} FROM Automation WHERE {where}"
    return [automation_from_row(r) for r in fetch_multiple_elements(db_path,query,params)]

def get_automations_of_home(db_path:str,home_id:str,app_code:str):
    return search_automations(db_path,home_id,app_code)

#endregion

#region Logs
def add_log(logs_list:list,db_path:str=DbPathEnum.LOGS):
    query = "INSERT INTO Logs(actor, event, target, payload, timestamp) VALUES (?, ?, ?, ?, ?)"
    return add_multiple_elements(db_path,query,logs_list)

#endregion

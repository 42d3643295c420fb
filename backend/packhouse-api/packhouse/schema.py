# packhouse/schema.py
#
# Tables owned by (or read by) the packaging core. The DDL sticks to types and
# constraints that SQL Server and SQLite both accept so the same statements
# bootstrap production and the test database.

TABLES = [
    # external: order header, read-mostly
    """
    CREATE TABLE customer_orders (
        order_id           VARCHAR(64)   NOT NULL PRIMARY KEY,
        order_number       VARCHAR(64)   NOT NULL,
        customer_name      NVARCHAR(200) NOT NULL,
        customer_email     NVARCHAR(200) NULL,
        customer_phone     VARCHAR(40)   NULL,
        ship_to_address    NVARCHAR(400) NULL,
        bill_to_address    NVARCHAR(400) NULL,
        order_status       VARCHAR(32)   NOT NULL,
        completed_at       DATETIME2     NULL,
        packaging_deleted  BIT           NOT NULL DEFAULT 0,
        updated_at         DATETIME2     NULL
    )
    """,
    # external: picked order lines, source of truth for quantity_picked
    """
    CREATE TABLE picklist (
        id               VARCHAR(64)   NOT NULL PRIMARY KEY,
        order_id         VARCHAR(64)   NOT NULL,
        sku              VARCHAR(64)   NOT NULL,
        item_name        NVARCHAR(200) NOT NULL,
        barcode          VARCHAR(64)   NULL,
        quantity_picked  INT           NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE packaging_sessions (
        id                 VARCHAR(36)   NOT NULL PRIMARY KEY,
        session_token      VARCHAR(40)   NOT NULL UNIQUE,
        order_id           VARCHAR(64)   NOT NULL,
        customer_name      NVARCHAR(200) NOT NULL,
        packaged_by        NVARCHAR(100) NOT NULL,
        status             VARCHAR(16)   NOT NULL,
        total_items        INT           NOT NULL DEFAULT 0,
        total_cartons      INT           NOT NULL DEFAULT 0,
        started_at         DATETIME2     NOT NULL,
        completed_at       DATETIME2     NULL,
        shipment_created   BIT           NOT NULL DEFAULT 0,
        shipment_order_id  VARCHAR(36)   NULL,
        updated_at         DATETIME2     NULL
    )
    """,
    """
    CREATE TABLE package_cartons (
        id                VARCHAR(36)   NOT NULL PRIMARY KEY,
        carton_barcode    VARCHAR(64)   NOT NULL UNIQUE,
        session_id        VARCHAR(36)   NOT NULL,
        box_number        INT           NOT NULL,
        box_type          VARCHAR(32)   NOT NULL,
        estimated_weight  FLOAT         NULL,
        actual_weight     FLOAT         NULL,
        status            VARCHAR(16)   NOT NULL,
        items_count       INT           NOT NULL DEFAULT 0,
        created_at        DATETIME2     NOT NULL,
        sealed_at         DATETIME2     NULL,
        sealed_by         NVARCHAR(100) NULL,
        CONSTRAINT uq_carton_box UNIQUE (session_id, box_number)
    )
    """,
    """
    CREATE TABLE carton_items (
        id         VARCHAR(36)   NOT NULL PRIMARY KEY,
        carton_id  VARCHAR(36)   NOT NULL,
        line_id    VARCHAR(64)   NOT NULL,
        quantity   INT           NOT NULL,
        added_by   NVARCHAR(100) NOT NULL,
        added_at   DATETIME2     NOT NULL,
        CONSTRAINT uq_carton_line UNIQUE (carton_id, line_id)
    )
    """,
    """
    CREATE TABLE shipment_orders (
        id                    VARCHAR(36)    NOT NULL PRIMARY KEY,
        shipment_id           VARCHAR(32)    NOT NULL UNIQUE,
        order_type            VARCHAR(16)    NOT NULL,
        status                VARCHAR(32)    NOT NULL,
        destination           NVARCHAR(400)  NULL,
        total_cartons         INT            NOT NULL DEFAULT 0,
        created_by            NVARCHAR(100)  NOT NULL,
        shipment_type         VARCHAR(16)    NULL,
        loading_strategy      VARCHAR(16)    NULL,
        truck_details         NVARCHAR(4000) NULL,
        courier_details       NVARCHAR(4000) NULL,
        in_person_details     NVARCHAR(4000) NULL,
        special_instructions  NVARCHAR(1000) NULL,
        expected_dispatch_at  DATETIME2      NULL,
        created_at            DATETIME2      NOT NULL,
        configured_at         DATETIME2      NULL,
        updated_at            DATETIME2      NULL
    )
    """,
    # session_id is unique: a session belongs to at most one shipment at a time
    """
    CREATE TABLE shipment_sessions (
        id                 VARCHAR(36)   NOT NULL PRIMARY KEY,
        shipment_order_id  VARCHAR(36)   NOT NULL,
        session_id         VARCHAR(36)   NOT NULL UNIQUE,
        customer_name      NVARCHAR(200) NOT NULL,
        order_number       VARCHAR(64)   NOT NULL,
        carton_count       INT           NOT NULL,
        created_at         DATETIME2     NOT NULL
    )
    """,
    """
    CREATE TABLE shipment_cartons (
        id                 VARCHAR(36)   NOT NULL PRIMARY KEY,
        shipment_order_id  VARCHAR(36)   NOT NULL,
        carton_barcode     VARCHAR(64)   NOT NULL,
        customer_name      NVARCHAR(200) NOT NULL,
        is_loaded          BIT           NOT NULL DEFAULT 0,
        created_at         DATETIME2     NOT NULL
    )
    """,
]

INDEXES = [
    # one in-progress session per order
    "CREATE UNIQUE INDEX ux_sessions_active_order ON packaging_sessions (order_id) WHERE status = 'in_progress'",
    "CREATE INDEX ix_sessions_status ON packaging_sessions (status)",
    "CREATE INDEX ix_cartons_session ON package_cartons (session_id, status)",
    "CREATE INDEX ix_items_line ON carton_items (line_id)",
    "CREATE INDEX ix_picklist_order ON picklist (order_id)",
    "CREATE INDEX ix_shipment_cartons_order ON shipment_cartons (shipment_order_id)",
]


def create_schema(conn) -> None:
    """Create every table and index on a fresh database."""
    cur = conn.cursor()
    for stmt in TABLES + INDEXES:
        cur.execute(stmt)
    conn.commit()

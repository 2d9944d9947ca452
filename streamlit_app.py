import streamlit as st
from typing import Dict, Any
import json
import os

# 导入后端模块
from datasync.config import CURRENT_TABLE, PROVIDED_TABLE, SyncAction
from datasync.core import MySQLConnector, SQLiteConnector, MetaDataQuerier
from datasync.errors import StoreError, ValidationError
from datasync.generator import SqlBuilder, SyncSqlGenerator
from datasync.services import ConfigService, SyncService
from datasync.utils import read_rows, records_to_frame, write_rows

# --- 配置文件管理 ---
PROFILE_FILE = "connection_profiles.json"
PROFILE_KEYS = ['db_type', 'sqlite_path', 'db_host', 'db_port', 'db_user', 'db_pass', 'db_name']


def get_app_dir():
    """获取应用程序所在目录，连接配置文件保存在这里。"""
    return os.path.dirname(os.path.abspath(__file__))


def load_last_profile() -> Dict[str, Any]:
    """加载最后一次使用的连接配置"""
    file_path = os.path.join(get_app_dir(), PROFILE_FILE)
    if not os.path.exists(file_path):
        return {}
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        st.warning(f"无法加载配置文件: {e}")
        return {}


def save_current_profile(profile_data: Dict[str, Any]):
    """保存当前连接配置"""
    file_path = os.path.join(get_app_dir(), PROFILE_FILE)
    try:
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(profile_data, f, indent=4, ensure_ascii=False)
    except OSError as e:
        st.warning(f"无法保存配置文件: {e}")


# --- 页面配置 ---
st.set_page_config(
    page_title="数据同步判定工具",
    page_icon="🔄",
    layout="wide",
    initial_sidebar_state="expanded"
)


# --- 状态管理 (State Management) ---
def init_session_state():
    """统一初始化 Session State"""
    defaults = {
        'sync_config': None,
        'config_error': None,
        'report': None,
        'run_error': None,
        'store_tables': [],
        'has_loaded_profile': False,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value

    # 加载本地连接配置 (仅一次)
    if not st.session_state.has_loaded_profile:
        for key, val in load_last_profile().items():
            if key in PROFILE_KEYS:
                st.session_state[key] = val
        st.session_state.has_loaded_profile = True


init_session_state()


# --- 辅助函数 ---
def create_connector():
    """根据侧边栏的设置创建数据库连接器"""
    if st.session_state.get('db_type', 'SQLite') == 'MySQL':
        return MySQLConnector({
            'host': st.session_state.get('db_host'),
            'port': st.session_state.get('db_port'),
            'user': st.session_state.get('db_user'),
            'password': st.session_state.get('db_pass'),
            'database': st.session_state.get('db_name'),
        })
    return SQLiteConnector(st.session_state.get('sqlite_path') or ":memory:")


def handle_config_upload():
    """上传配置文件后立即校验"""
    uploaded = st.session_state.get('config_file')
    st.session_state.sync_config = None
    st.session_state.config_error = None
    st.session_state.report = None
    if uploaded is None:
        return
    try:
        document = json.load(uploaded)
        st.session_state.sync_config = ConfigService().load(document)
    except json.JSONDecodeError as e:
        st.session_state.config_error = f"配置文件不是合法的JSON: {e}"
    except ValidationError as e:
        st.session_state.config_error = str(e)


def run_sync(provided_file, current_file):
    """读取两份CSV并执行同步判定"""
    config = st.session_state.sync_config
    st.session_state.report = None
    st.session_state.run_error = None
    save_current_profile({key: st.session_state.get(key) for key in PROFILE_KEYS})

    try:
        provided_rows = read_rows(
            provided_file, config.csv_format(PROVIDED_TABLE),
            [c.name for c in config.table(PROVIDED_TABLE).data_columns]
        )
        current_rows = read_rows(
            current_file, config.csv_format(CURRENT_TABLE),
            [c.name for c in config.table(CURRENT_TABLE).data_columns]
        )
        with create_connector() as connector:
            st.session_state.report = SyncService(config, connector).run(provided_rows, current_rows)
            st.session_state.store_tables = MetaDataQuerier(connector).get_all_tables()
    except StoreError as e:
        st.session_state.run_error = f"同步中断: {e}"
    except (ValueError, UnicodeDecodeError) as e:
        st.session_state.run_error = f"读取CSV失败: {e}"


# --- 组件渲染函数 (Component Rendering) ---
def render_sidebar():
    with st.sidebar:
        st.header("🗄️ 数据库设置")
        db_type = st.radio("数据库类型", ["SQLite", "MySQL"], key="db_type", horizontal=True)
        if db_type == "SQLite":
            st.text_input("数据库文件 (留空使用内存数据库)", value=st.session_state.get('sqlite_path', ""), key="sqlite_path")
        else:
            st.text_input("Host", value=st.session_state.get('db_host', "127.0.0.1"), key="db_host")
            st.number_input("Port", value=int(st.session_state.get('db_port', 3306)), step=1, key="db_port")
            st.text_input("Username", value=st.session_state.get('db_user', "root"), key="db_user")
            st.text_input("Password", value=st.session_state.get('db_pass', ""), type="password", key="db_pass")
            st.text_input("Database", value=st.session_state.get('db_name', "datasync"), key="db_name")

        if st.session_state.store_tables:
            st.divider()
            st.caption("同步后数据库中的表")
            st.write(", ".join(st.session_state.store_tables))


def render_config_section():
    st.header("1. 同步配置")
    st.file_uploader("上传同步配置文件 (JSON)", type=['json'], key="config_file", on_change=handle_config_upload)

    if st.session_state.config_error:
        st.error(f"❌ {st.session_state.config_error}")
        return None

    config = st.session_state.sync_config
    if config is None:
        st.info("请先上传配置文件。")
        return None

    rules = config.sync_rules
    st.success("✅ 配置校验通过")
    col1, col2, col3 = st.columns(3)
    col1.metric("提供数据键", ", ".join(config.key_columns(PROVIDED_TABLE)))
    col2.metric("现有数据键", ", ".join(config.key_columns(CURRENT_TABLE)))
    col3.metric("比较字段数", len(config.compare_pairs()))

    with st.expander("字段映射", expanded=False):
        st.table([{"提供数据": p, "现有数据": c} for p, c in rules.column_mappings.items()])

    with st.expander("生成的SQL脚本", expanded=False):
        dialect = "mysql" if st.session_state.get('db_type') == 'MySQL' else "sqlite"
        script = SyncSqlGenerator(config, SqlBuilder(dialect)).generate_script()
        st.code(script, language="sql")
        st.download_button("📥 下载 SQL 脚本", script, file_name="sync.sql", mime="text/plain")
    return config


def render_data_section(config):
    st.header("2. 数据文件")
    col1, col2 = st.columns(2)
    with col1:
        provided_file = st.file_uploader("提供数据 (CSV)", type=['csv'], key="provided_file")
    with col2:
        current_file = st.file_uploader("现有数据 (CSV)", type=['csv'], key="current_file")

    disabled = provided_file is None or current_file is None
    if st.button("🚀 执行同步判定", type="primary", disabled=disabled, use_container_width=True):
        with st.spinner("正在执行同步判定..."):
            run_sync(provided_file, current_file)


def render_result_section(config):
    if st.session_state.run_error:
        st.error(f"❌ {st.session_state.run_error}")
        return

    report = st.session_state.report
    if report is None:
        return

    st.header("3. 同步结果")
    cols = st.columns(len(SyncAction))
    for col, action in zip(cols, SyncAction):
        col.metric(action.value, report.counts.get(action, 0))

    if report.has_duplicates:
        st.warning(f"⚠️ {report.integrity_error()}")

    with st.expander("过滤与数据检查", expanded=False):
        for table_name, stats in report.filter_stats.items():
            errors = report.row_errors[table_name]
            st.write(
                f"**{table_name}**: 共 {stats.total} 行, 保留 {stats.kept} 行, "
                f"排除 {stats.excluded} 行 ({stats.exclusion_rate}%), 不合法 {errors.skipped} 行"
            )
            for sample in errors.sample:
                st.caption(sample)

    action_column = config.sync_rules.action_column
    frame = records_to_frame(report.records, config.export_columns(), action_column)
    selected = st.multiselect("按判定结果筛选", [a.value for a in SyncAction], default=[a.value for a in SyncAction])
    st.dataframe(frame[frame[action_column].isin(selected)], use_container_width=True)

    csv_text = write_rows(None, frame, config.csv_format("output"))
    st.download_button("📥 下载结果 CSV", csv_text, file_name="sync_result.csv", mime="text/csv")


render_sidebar()
st.title("🔄 数据同步判定工具")
sync_config = render_config_section()
if sync_config is not None:
    render_data_section(sync_config)
    render_result_section(sync_config)

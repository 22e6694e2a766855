import logging

from shared.logging.logging_setup import ColorLogger, CustomFormatter, TenantContextFilter, tenant_log_context


def make_record(msg: str, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("knowledge_bridge", level, __file__, 1, msg, (), None)


class TestTenantContext:
    def test_outside_tenant_work(self):
        record = make_record("hello")
        assert TenantContextFilter().filter(record) is True
        assert record.tenant == "-"

    def test_tags_records_inside_block(self):
        with tenant_log_context("tenant-1"):
            record = make_record("hello")
            TenantContextFilter().filter(record)
        assert record.tenant == "tenant-1"

    def test_nested_blocks_restore_outer_tenant(self):
        with tenant_log_context("outer"):
            with tenant_log_context("inner"):
                pass
            record = make_record("hello")
            TenantContextFilter().filter(record)
        assert record.tenant == "outer"


class TestFormatter:
    def test_warning_prefix_and_tenant(self):
        formatter = CustomFormatter("UTC", "%(levelname)s [%(tenant)s] %(message)s")
        with tenant_log_context("tenant-1"):
            record = make_record("careful", logging.WARNING)
            TenantContextFilter().filter(record)
        assert formatter.format(record) == "WARNING [tenant-1] ⚠️ careful"

    def test_color_logger_passes_color_as_extra(self, caplog):
        logger = ColorLogger(logging.getLogger("knowledge_bridge.tests.color"))
        with caplog.at_level(logging.INFO, logger="knowledge_bridge.tests.color"):
            logger.info("done", color="green")
        assert caplog.records[-1].color == "green"

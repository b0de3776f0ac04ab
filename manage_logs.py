#!/usr/bin/env python3
"""
日志管理工具
查看爬虫和会话日志统计、清理过期日志、检查各业务日志记录器
"""

import sys
import time
import argparse
from datetime import datetime

from tender_monitor.utils.logging import (
    BUSINESS_LOGS,
    get_log_statistics,
    cleanup_old_logs,
    get_business_logger,
    log_business_operation
)


@log_business_operation('system', '日志统计查看')
def show_log_statistics():
    """显示日志统计信息"""
    stats = get_log_statistics()

    print("\n" + "=" * 60)
    print("📊 Tender Monitor 日志统计")
    print("=" * 60)
    print(f"📁 总文件数: {stats['total_files']}")
    print(f"💾 总大小: {stats['total_size_mb']:.2f} MB")
    if stats['oldest_log']:
        print(f"📅 最旧日志: {stats['oldest_log']}")
    if stats['newest_log']:
        print(f"🆕 最新日志: {stats['newest_log']}")

    if stats['files_by_business']:
        print("\n📋 按业务分类:")
        for business, info in sorted(stats['files_by_business'].items()):
            print(f"  {business}: {info['count']} 文件, {info['size_mb']:.2f} MB")
    print("=" * 60 + "\n")


@log_business_operation('system', '日志清理')
def cleanup_logs(retention_days: int):
    """清理过期日志"""
    print(f"\n🧹 清理超过 {retention_days} 天的日志文件...")
    cleaned_count = cleanup_old_logs(retention_days=retention_days)
    if cleaned_count:
        print(f"✅ 删除了 {cleaned_count} 个过期日志文件")
    else:
        print("ℹ️  没有需要清理的日志文件")


def check_business_loggers():
    """向每个业务日志写入一条记录"""
    for business in BUSINESS_LOGS:
        get_business_logger(business).info(f"Logger check for {business} at {datetime.now().isoformat()}")
        print(f"✅ {business} -> {BUSINESS_LOGS[business]}")


def monitor_logs(interval: float):
    """持续显示日志目录大小 (Ctrl+C 退出)"""
    print("\n👀 日志监控模式 (按 Ctrl+C 退出)")
    while True:
        stats = get_log_statistics()
        print(f"\r📊 文件: {stats['total_files']}, "
              f"大小: {stats['total_size_mb']:.2f}MB, "
              f"时间: {datetime.now().strftime('%H:%M:%S')}",
              end='', flush=True)
        time.sleep(interval)


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description="Tender Monitor 日志管理工具")
    parser.add_argument(
        'action',
        choices=['stats', 'cleanup', 'check', 'monitor'],
        help='stats(统计), cleanup(清理), check(检查日志记录器), monitor(监控)'
    )
    parser.add_argument('--days', type=int, default=7, help='日志保留天数 (默认: 7天)')
    parser.add_argument('--interval', type=float, default=5.0, help='监控刷新间隔秒数')
    args = parser.parse_args()

    try:
        if args.action == 'stats':
            show_log_statistics()
        elif args.action == 'cleanup':
            cleanup_logs(args.days)
        elif args.action == 'check':
            check_business_loggers()
        elif args.action == 'monitor':
            monitor_logs(args.interval)
    except KeyboardInterrupt:
        print("\n\n👋 已停止")
    except OSError as e:
        print(f"\n❌ 错误: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

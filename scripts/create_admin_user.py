
import argparse
import os

from app.db.session import session_scope
from app.repository.user_repo import create_default_user


# 在容器里运行一次：python -m scripts.create_admin_user --password '...'
# （确保 PYTHONPATH 指向 backend 目录）。密码也可以走环境变量 ADMIN_PASSWORD。

def main():
    ap = argparse.ArgumentParser(description="Create the default sync admin user if missing.")
    ap.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"))
    args = ap.parse_args()
    if not args.password:
        ap.error("provide --password or set ADMIN_PASSWORD")

    with session_scope() as db:
        user = create_default_user(db, args.password)
    print(f"Admin ready: {user.username} (id={user.id})")

if __name__ == "__main__":
    main()

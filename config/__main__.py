"""Command line interface for checking configuration loading"""
from . import settings_conf, get_zcash_conf, ZcashConfigError

SECRET_KEYS = ('jwt_secret', 'rpcpassword')

def _show(value, key):
    if key in SECRET_KEYS and value:
        return '********'
    return value

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        print(f"{key}: {_show(value, key)}")

    print("\nZcash Configuration:")
    print("-" * 50)
    try:
        for key, value in get_zcash_conf().items():
            print(f"{key}: {_show(value, key)}")
    except ZcashConfigError as e:
        print(str(e))

if __name__ == "__main__":
    main()

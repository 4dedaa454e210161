"""Schema v1 - Ledger, invoices, withdrawals, earnings and privacy settings.

Money columns are DECIMAL(20, 8) to hold zatoshi-exact ZEC amounts.
The privacy audit log is append-only: a trigger rejects UPDATE and DELETE.
"""

MONEY = 'DECIMAL(20, 8)'

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'accounts',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True},
                {'name': 'balance', 'type': MONEY, 'nullable': False, 'default': '0'},
                {'name': 'subscription_expires_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_accounts_balance_non_negative', 'expression': 'balance >= 0'}
            ]
        },
        {
            'name': 'ledger_entries',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'delta', 'type': MONEY, 'nullable': False},
                {'name': 'balance_after', 'type': MONEY, 'nullable': False},
                {'name': 'entry_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'reference_id', 'type': 'UUID'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_ledger_entries_delta_non_zero', 'expression': 'delta <> 0'},
                {'name': 'chk_ledger_entries_balance_after', 'expression': 'balance_after >= 0'}
            ],
            'foreign_keys': [
                {'columns': ['account_id'], 'references': 'accounts(id)'}
            ],
            'indexes': [
                {'name': 'idx_ledger_entries_account', 'columns': ['account_id', 'created_at']},
                {'name': 'idx_ledger_entries_reference', 'columns': ['reference_id']}
            ]
        },
        {
            'name': 'invoices',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'owner_account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'counterparty_account_id', 'type': 'UUID'},
                {'name': 'resource_id', 'type': 'TEXT'},
                {'name': 'kind', 'type': 'TEXT', 'nullable': False},
                {'name': 'requested_amount', 'type': MONEY, 'nullable': False},
                {'name': 'payment_method', 'type': 'TEXT', 'nullable': False, 'default': "'auto'"},
                {'name': 'payment_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'address_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'address_metadata', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'paid_amount', 'type': MONEY},
                {'name': 'paid_reference', 'type': 'TEXT'},
                {'name': 'paid_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {
                    'name': 'chk_invoices_kind',
                    'expression': "kind IN ('subscription', 'one_time', 'data_access')"
                },
                {
                    'name': 'chk_invoices_status',
                    'expression': "status IN ('pending', 'paid', 'expired', 'cancelled')"
                },
                {'name': 'chk_invoices_amount_positive', 'expression': 'requested_amount > 0'},
                {
                    'name': 'chk_invoices_paid_fields',
                    'expression': "(status = 'paid') = (paid_amount IS NOT NULL)"
                }
            ],
            'foreign_keys': [
                {'columns': ['owner_account_id'], 'references': 'accounts(id)'}
            ],
            'indexes': [
                {'name': 'idx_invoices_owner', 'columns': ['owner_account_id', 'created_at']},
                {'name': 'idx_invoices_pending_expiry', 'columns': ['status', 'expires_at']},
                {'name': 'idx_invoices_pending_order', 'columns': ['status', 'created_at', 'id']},
                {'name': 'idx_invoices_address', 'columns': ['payment_address'], 'unique': True}
            ]
        },
        {
            'name': 'withdrawals',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'requested_amount', 'type': MONEY, 'nullable': False},
                {'name': 'fee', 'type': MONEY, 'nullable': False},
                {'name': 'net_amount', 'type': MONEY, 'nullable': False},
                {'name': 'destination_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'address_type', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'external_reference', 'type': 'TEXT'},
                {'name': 'failure_reason', 'type': 'TEXT'},
                {'name': 'requested_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'processed_at', 'type': 'TIMESTAMPTZ'}
            ],
            'checks': [
                {
                    'name': 'chk_withdrawals_status',
                    'expression': "status IN ('pending', 'processing', 'sent', 'failed')"
                },
                {'name': 'chk_withdrawals_net_positive', 'expression': 'net_amount > 0'},
                {
                    'name': 'chk_withdrawals_fee_balance',
                    'expression': 'fee + net_amount = requested_amount'
                }
            ],
            'foreign_keys': [
                {'columns': ['account_id'], 'references': 'accounts(id)'}
            ],
            'indexes': [
                {'name': 'idx_withdrawals_account', 'columns': ['account_id', 'requested_at']},
                {'name': 'idx_withdrawals_status', 'columns': ['status', 'requested_at']}
            ]
        },
        {
            'name': 'earnings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'owner_account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'buyer_account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'invoice_id', 'type': 'UUID', 'nullable': False, 'unique': True},
                {'name': 'resource_id', 'type': 'TEXT'},
                {'name': 'owner_share', 'type': MONEY, 'nullable': False},
                {'name': 'platform_share', 'type': MONEY, 'nullable': False},
                {'name': 'earned_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_earnings_shares', 'expression': 'owner_share >= 0 AND platform_share >= 0'}
            ],
            'foreign_keys': [
                {'columns': ['invoice_id'], 'references': 'invoices(id)'},
                {'columns': ['owner_account_id'], 'references': 'accounts(id)'}
            ],
            'indexes': [
                {'name': 'idx_earnings_owner', 'columns': ['owner_account_id', 'earned_at']}
            ]
        },
        {
            'name': 'privacy_settings',
            'columns': [
                {'name': 'resource_id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'owner_account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'mode', 'type': 'TEXT', 'nullable': False, 'default': "'private'"},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_by', 'type': 'UUID', 'nullable': False}
            ],
            'checks': [
                {
                    'name': 'chk_privacy_settings_mode',
                    'expression': "mode IN ('private', 'public', 'monetizable')"
                }
            ],
            'indexes': [
                {'name': 'idx_privacy_settings_owner', 'columns': ['owner_account_id']}
            ]
        },
        {
            'name': 'privacy_audit_log',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'resource_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'mode', 'type': 'TEXT', 'nullable': False},
                {'name': 'previous_mode', 'type': 'TEXT'},
                {'name': 'changed_by', 'type': 'UUID', 'nullable': False},
                {'name': 'changed_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['resource_id'], 'references': 'privacy_settings(resource_id)'}
            ],
            'indexes': [
                {'name': 'idx_privacy_audit_resource', 'columns': ['resource_id', 'changed_at']}
            ]
        },
        {
            'name': 'data_access_grants',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'buyer_account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'owner_account_id', 'type': 'UUID', 'nullable': False},
                {'name': 'resource_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'invoice_id', 'type': 'UUID', 'nullable': False},
                {'name': 'amount_paid', 'type': MONEY, 'nullable': False},
                {'name': 'granted_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False}
            ],
            'unique': [
                ['buyer_account_id', 'resource_id']
            ],
            'foreign_keys': [
                {'columns': ['resource_id'], 'references': 'privacy_settings(resource_id)'}
            ],
            'indexes': [
                {'name': 'idx_grants_resource', 'columns': ['resource_id', 'expires_at']}
            ]
        }
    ],
    'triggers': [
        {
            'name': 'trg_privacy_audit_append_only',
            'table': 'privacy_audit_log',
            'timing': 'BEFORE',
            'event': 'UPDATE OR DELETE',
            'function_name': 'reject_privacy_audit_mutation',
            'function_body': '''
                BEGIN
                    RAISE EXCEPTION 'privacy_audit_log is append-only';
                END;
            '''
        }
    ],
    'migrations': []
}
